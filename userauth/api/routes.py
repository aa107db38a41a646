from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Query, Request, Response

from userauth.api.schemas import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    Envelope,
    LoginRequest,
    LoginResponse,
    PageLinks,
    PasswordResetConfirm,
    PasswordResetRequest,
    UserCreateRequest,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
)
from userauth.logging import get_logger
from userauth.service.audit import HttpMethod
from userauth.service.errors import AuditUnavailableError, BadRequestError
from userauth.service.identity import (
    Identity,
    Operation,
    authorize,
    identity_from_token,
)
from userauth.service.runtime import Runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_IS_ACTIVE_FILTERS = {"true": True, "false": False, "all": None}


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


async def get_identity(
    request: Request,
    x_auth_token: Optional[str] = Header(None),
) -> Identity:
    """Resolve the caller from the ``x-auth-token`` header."""
    runtime = get_runtime(request)
    return identity_from_token(x_auth_token, runtime.settings.jwt_secret)


def require_operation(operation: Operation, message: str):
    """Dependency factory: resolve the caller, then gate on ``operation``."""

    async def _require(identity: Identity = Depends(get_identity)) -> Identity:
        authorize(identity, operation, message)
        return identity

    return _require


can_upsert_users = require_operation(Operation.USER_UPSERT, "Forbidden upserting users")
can_list_users = require_operation(Operation.USER_LIST, "Forbidden listing users")
can_delete_users = require_operation(Operation.USER_DELETE, "Forbidden deleting users")


async def _audit(
    runtime: Runtime, identity: Identity, method: HttpMethod, data: str
) -> None:
    """Report an action taken for an auditing identity.

    Runs after the action has been committed; a delivery failure is surfaced
    as 424 without undoing it.
    """
    if not identity.audit:
        return
    if not await runtime.audit.record(identity.user_id, method, data):
        logger.error(
            "action_audit_unavailable", user_id=identity.user_id, method=method.value
        )
        raise AuditUnavailableError()


@router.post("/auth", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, response: Response, request: Request):
    runtime = get_runtime(request)
    result = await runtime.auth.authenticate(body.email, body.password)
    response.headers["x-auth-token"] = result.token
    return Envelope(
        status="ok",
        data=LoginResponse(
            user_id=result.user.id,
            first_name=result.user.first_name,
            last_name=result.user.last_name,
            operations=list(result.payload.operations),
            auth_token=result.token,
            expires_at=result.payload.exp,
        ),
    )


@router.post("/users", response_model=Envelope, status_code=201, tags=["users"])
async def create_user(
    body: UserCreateRequest,
    request: Request,
    identity: Identity = Depends(can_upsert_users),
):
    runtime = get_runtime(request)
    user = runtime.users.create_user(
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        password=body.password,
        is_active=body.is_active,
        audit=body.audit,
        operation_ids=body.operation_ids,
        role_ids=body.role_ids,
    )
    await _audit(runtime, identity, HttpMethod.POST, f"Created user {user.id}")
    return Envelope(status="ok", data=UserResponse.from_record(user))


@router.put("/users/{user_id}", response_model=Envelope, tags=["users"])
async def update_user(
    body: UserUpdateRequest,
    request: Request,
    user_id: str = Path(..., max_length=64),
    identity: Identity = Depends(can_upsert_users),
):
    runtime = get_runtime(request)
    changes = {
        name: value
        for name, value in body.model_dump(exclude_unset=True).items()
        if value is not None
    }
    if not changes:
        raise BadRequestError("No fields to update.")
    user = runtime.users.update_user(user_id, changes)
    await _audit(
        runtime,
        identity,
        HttpMethod.PUT,
        f"Updated user {user.id}: {', '.join(sorted(changes))}",
    )
    return Envelope(status="ok", data=UserResponse.from_record(user))


@router.get("/users/me", response_model=Envelope, tags=["users"])
async def get_me(request: Request, identity: Identity = Depends(get_identity)):
    runtime = get_runtime(request)
    user = runtime.users.get_user(identity.user_id)
    await _audit(runtime, identity, HttpMethod.GET, f"Read own user {user.id}")
    return Envelope(status="ok", data=UserResponse.from_record(user))


@router.get("/users/findBy", response_model=Envelope, tags=["users"])
async def find_user(
    request: Request,
    entity_id: Optional[str] = Query(None, max_length=64),
    email: Optional[str] = Query(None, max_length=255),
    identity: Identity = Depends(can_list_users),
):
    runtime = get_runtime(request)
    user = runtime.users.find_user(entity_id=entity_id, email=email)
    await _audit(runtime, identity, HttpMethod.GET, f"Found user {user.id}")
    return Envelope(status="ok", data=UserResponse.from_record(user))


@router.get("/users", response_model=Envelope, tags=["users"])
async def list_users(
    request: Request,
    page_number: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    is_active: str = Query("true", pattern="^(true|false|all)$"),
    filter_by_field: Optional[str] = Query(None, max_length=64),
    filter_value: Optional[str] = Query(None, max_length=255),
    sort_by: str = Query("created_at", max_length=64),
    identity: Identity = Depends(can_list_users),
):
    runtime = get_runtime(request)
    page_size = min(page_size, MAX_PAGE_SIZE)
    users = runtime.users.list_users(
        page_number=page_number,
        page_size=page_size,
        is_active=_IS_ACTIVE_FILTERS[is_active],
        filter_by_field=filter_by_field,
        filter_value=filter_value,
        sort_by=sort_by,
    )
    links = PageLinks(base=str(request.url.replace(query="")))
    if page_number > 1:
        links.prev = str(
            request.url.include_query_params(
                page_number=page_number - 1, page_size=page_size
            )
        )
    if len(users) == page_size:
        links.next = str(
            request.url.include_query_params(
                page_number=page_number + 1, page_size=page_size
            )
        )
    await _audit(
        runtime, identity, HttpMethod.GET, f"Listed users page {page_number}"
    )
    page = UserListResponse(
        page_size=page_size,
        page_number=page_number,
        links=links,
        results=[UserResponse.from_record(u) for u in users],
    )
    return Envelope(status="ok", data=page.model_dump(mode="json", by_alias=True))


@router.delete("/users/{user_id}", response_model=Envelope, tags=["users"])
async def delete_user(
    request: Request,
    user_id: str = Path(..., max_length=64),
    hard_delete: bool = Query(False),
    identity: Identity = Depends(can_delete_users),
):
    runtime = get_runtime(request)
    runtime.users.delete_user(user_id, hard_delete=hard_delete)
    kind = "Hard deleted" if hard_delete else "Soft deleted"
    await _audit(runtime, identity, HttpMethod.DELETE, f"{kind} user {user_id}")
    return Envelope(
        status="ok",
        data={"deleted": True, "user_id": user_id, "hard_delete": hard_delete},
    )


@router.post(
    "/otp/passwordresetrequest", response_model=Envelope, status_code=201, tags=["otp"]
)
async def request_password_reset(body: PasswordResetRequest, request: Request):
    runtime = get_runtime(request)
    await runtime.otp.request_reset(body.email, body.reset_url)
    return Envelope(status="ok", data={"status": "sent"})


@router.post("/otp/passwordreset", response_model=Envelope, tags=["otp"])
async def complete_password_reset(body: PasswordResetConfirm, request: Request):
    runtime = get_runtime(request)
    runtime.otp.complete_reset(body.otp_id, body.password)
    return Envelope(status="ok", data={"message": "Password was updated."})
