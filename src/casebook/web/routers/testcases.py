from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from casebook.core.modules.testcase.models import Priority, TestCase, TestCaseCreate, TestCaseStatus, TestCaseUpdate
from casebook.core.pagination import PaginationResult
from casebook.web.deps import AppDep, AuthTokenDep, PageLimit, PageOffset, ProjectKey
from casebook.web.openapi import ErrorResponse

router = APIRouter(tags=["testcases"])


class BulkDeleteRequest(BaseModel):
    """Request to delete several test cases."""

    tc_ids: list[str] = Field(..., min_length=1, description="Test case ids to delete, e.g. ['tc1', 'tc4']")


class BulkDeleteResponse(BaseModel):
    deleted: int = Field(..., description="Number of deleted test cases")


@router.get(
    "/projects/{project_key}/testcases",
    summary="List project test cases",
    description="Get paginated test cases of a project, newest first. Only project members can view test cases.",
    operation_id="listTestCases",
    responses={
        200: {"description": "Paginated list of test cases"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project not found"},
    },
)
async def list_test_cases(
    project_key: ProjectKey,
    app: AppDep,
    auth_token: AuthTokenDep,
    limit: PageLimit = 50,
    offset: PageOffset = 0,
    status: Annotated[TestCaseStatus | None, Query(description="Only test cases with this status")] = None,
    priority: Annotated[Priority | None, Query(description="Only test cases with this priority")] = None,
    search: Annotated[str | None, Query(description="Substring of title, description or tc id")] = None,
) -> PaginationResult[TestCase]:
    return await app.get_test_cases(auth_token, project_key, limit, offset, status, priority, search)


@router.post(
    "/projects/{project_key}/testcases",
    summary="Create test case",
    description="Create a test case. It gets the next free id of the project (tc1, tc2, ...).",
    operation_id="createTestCase",
    status_code=201,
    responses={
        201: {"description": "Test case created successfully"},
        400: {"model": ErrorResponse, "description": "Invalid test case data"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project not found"},
        503: {"model": ErrorResponse, "description": "No free id could be allocated, safe to retry"},
    },
)
async def create_test_case(project_key: ProjectKey, data: TestCaseCreate, app: AppDep, auth_token: AuthTokenDep) -> TestCase:
    return await app.create_test_case(auth_token, project_key, data)


@router.post(
    "/projects/{project_key}/testcases/bulk-delete",
    summary="Delete several test cases",
    description="Delete the given test cases with their attachments. Nothing is deleted if one of them does not exist.",
    operation_id="bulkDeleteTestCases",
    responses={
        200: {"description": "Test cases deleted"},
        400: {"model": ErrorResponse, "description": "No test cases given"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or one of the test cases not found"},
    },
)
async def bulk_delete_test_cases(
    project_key: ProjectKey, req: BulkDeleteRequest, app: AppDep, auth_token: AuthTokenDep
) -> BulkDeleteResponse:
    deleted = await app.bulk_delete_test_cases(auth_token, project_key, req.tc_ids)
    return BulkDeleteResponse(deleted=deleted)


@router.get(
    "/projects/{project_key}/testcases/{tc_id}",
    summary="Get test case",
    description="Get a test case by its project-scoped id.",
    operation_id="getTestCase",
    responses={
        200: {"description": "Test case details"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or test case not found"},
    },
)
async def get_test_case(project_key: ProjectKey, tc_id: str, app: AppDep, auth_token: AuthTokenDep) -> TestCase:
    return await app.get_test_case(auth_token, project_key, tc_id)


@router.patch(
    "/projects/{project_key}/testcases/{tc_id}",
    summary="Update test case",
    description="Partially update a test case. When steps are given they replace the current steps.",
    operation_id="updateTestCase",
    responses={
        200: {"description": "Test case updated successfully"},
        400: {"model": ErrorResponse, "description": "Invalid test case data"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or test case not found"},
    },
)
async def update_test_case(
    project_key: ProjectKey, tc_id: str, data: TestCaseUpdate, app: AppDep, auth_token: AuthTokenDep
) -> TestCase:
    return await app.update_test_case(auth_token, project_key, tc_id, data)


@router.delete(
    "/projects/{project_key}/testcases/{tc_id}",
    summary="Delete test case",
    description="Delete a test case with the attachments of the case and its steps.",
    operation_id="deleteTestCase",
    status_code=204,
    responses={
        204: {"description": "Test case deleted successfully"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or test case not found"},
    },
)
async def delete_test_case(project_key: ProjectKey, tc_id: str, app: AppDep, auth_token: AuthTokenDep) -> None:
    await app.delete_test_case(auth_token, project_key, tc_id)
