"""HTTP routers, one module per resource."""

from community_microhelp.routes.auth import router as auth_router
from community_microhelp.routes.chats import router as chats_router
from community_microhelp.routes.events import router as events_router
from community_microhelp.routes.groups import router as groups_router
from community_microhelp.routes.health import router as health_router
from community_microhelp.routes.invitations import router as invitations_router
from community_microhelp.routes.posts import router as posts_router
from community_microhelp.routes.profile import router as profile_router
from community_microhelp.routes.uploads import router as uploads_router

__all__ = [
    "auth_router",
    "chats_router",
    "events_router",
    "groups_router",
    "health_router",
    "invitations_router",
    "posts_router",
    "profile_router",
    "uploads_router",
]
