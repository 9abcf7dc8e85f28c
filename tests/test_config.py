from pydantic import ValidationError
import pytest

from community_microhelp.config import Settings


def test_defaults(settings):
    assert settings.PORT == 4000
    assert settings.ACCESS_TOKEN_EXPIRE_MINUTES == 7 * 24 * 60
    assert settings.MAX_UPLOAD_FILES == 5
    assert settings.REQUIRE_EMAIL_VERIFICATION is True
    assert settings.ALLOW_UNSAFE is False
    assert settings.RATE_LIMIT == "200 per 15 seconds"


def test_refresh_secret_falls_back_to_secret_key(settings):
    assert settings.refresh_secret == "unit-test-signing-key"
    separate = settings.model_copy(update={"REFRESH_TOKEN_SECRET_KEY": settings.SECRET_KEY.__class__("refresh-key")})
    assert separate.refresh_secret == "refresh-key"


@pytest.mark.parametrize("secret", ["", "   ", "change-me"])
def test_rejects_missing_or_placeholder_secret(secret):
    with pytest.raises(ValidationError):
        Settings(SECRET_KEY=secret, MONGODB_URL="mongodb://localhost:27017")


def test_rejects_empty_mongodb_url():
    with pytest.raises(ValidationError):
        Settings(SECRET_KEY="unit-test-signing-key", MONGODB_URL="")


def test_rejects_non_positive_limits():
    with pytest.raises(ValidationError):
        Settings(SECRET_KEY="unit-test-signing-key", MONGODB_URL="mongodb://localhost:27017", MAX_UPLOAD_FILES=0)


def test_cors_origins_list():
    settings = Settings(
        SECRET_KEY="unit-test-signing-key",
        MONGODB_URL="mongodb://localhost:27017",
        CORS_ORIGINS="http://a.test, http://b.test,",
    )
    assert settings.cors_origins_list == ["http://a.test", "http://b.test"]


def test_production_flag():
    settings = Settings(SECRET_KEY="unit-test-signing-key", MONGODB_URL="mongodb://x", ENVIRONMENT="production")
    assert settings.is_production
