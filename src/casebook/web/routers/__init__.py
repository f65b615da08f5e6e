from casebook.web.routers.attachments import router as attachments_router
from casebook.web.routers.auth import router as auth_router
from casebook.web.routers.comments import router as comments_router
from casebook.web.routers.defects import router as defects_router
from casebook.web.routers.metadata import router as metadata_router
from casebook.web.routers.profile import router as profile_router
from casebook.web.routers.projects import router as projects_router
from casebook.web.routers.testcases import router as testcases_router
from casebook.web.routers.users import router as users_router

__all__ = [
    "attachments_router",
    "auth_router",
    "comments_router",
    "defects_router",
    "metadata_router",
    "profile_router",
    "projects_router",
    "testcases_router",
    "users_router",
]
