from community_microhelp.routes.auth.routes import router

__all__ = ["router"]
