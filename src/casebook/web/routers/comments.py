from fastapi import APIRouter
from pydantic import BaseModel, Field

from casebook.core.modules.comment.models import Comment
from casebook.core.pagination import PaginationResult
from casebook.web.deps import AppDep, AuthTokenDep, PageLimit, PageOffset, ProjectKey
from casebook.web.openapi import ErrorResponse

router = APIRouter(tags=["comments"])


class CreateCommentRequest(BaseModel):
    """Request to create a comment."""

    content: str = Field(..., min_length=1, description="Comment text")


@router.get(
    "/projects/{project_key}/defects/{defect_id}/comments",
    summary="List defect comments",
    description="Get paginated comments for a defect, newest first. Only project members can view comments.",
    operation_id="listComments",
    responses={
        200: {"description": "Paginated list of comments"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or defect not found"},
    },
)
async def list_comments(
    project_key: ProjectKey,
    defect_id: str,
    app: AppDep,
    auth_token: AuthTokenDep,
    limit: PageLimit = 50,
    offset: PageOffset = 0,
) -> PaginationResult[Comment]:
    return await app.get_defect_comments(auth_token, project_key, defect_id, limit, offset)


@router.post(
    "/projects/{project_key}/defects/{defect_id}/comments",
    summary="Create comment",
    description="Add a comment to a defect. Only project members can comment.",
    operation_id="createComment",
    status_code=201,
    responses={
        201: {"description": "Comment created successfully"},
        400: {"model": ErrorResponse, "description": "Invalid request data"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or defect not found"},
    },
)
async def create_comment(
    project_key: ProjectKey, defect_id: str, req: CreateCommentRequest, app: AppDep, auth_token: AuthTokenDep
) -> Comment:
    return await app.create_comment(auth_token, project_key, defect_id, req.content)
