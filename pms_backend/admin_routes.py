"""
Administrative user management.

All routes require the ``x-admin-key`` header when ADMIN_API_KEY is set.
"""
import logging
from typing import Any, Callable, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, ValidationError

from .dependencies import ServiceContainer, get_container, require_admin_key
from .exceptions import PartialFailureError, ServiceError
from .models import Role
from .schemas.api_response import AccountActionResponse, error_payload


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin_key)],
)


class SetRoleRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    uid: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class DeleteUserRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    uid: Optional[str] = None
    email: Optional[str] = None


PayloadT = TypeVar("PayloadT", bound=BaseModel)


def _json_body(model: Type[PayloadT]) -> Callable[..., Any]:
    # Runs after the router's key guard.
    async def _parse(request: Request) -> PayloadT:
        try:
            raw = await request.json() if await request.body() else None
            return model.model_validate(raw or {})
        except (ValueError, ValidationError) as exc:
            raise HTTPException(status_code=400, detail=error_payload(message="Invalid request body")) from exc

    return _parse


def _admin_http_error(action: str, exc: ServiceError) -> HTTPException:
    if isinstance(exc, PartialFailureError):
        logger.error("%s stopped at step %s: %s", action, exc.step, exc.cause)
    elif exc.status_code >= 500:
        logger.error("%s failed: %s", action, exc)
    return HTTPException(status_code=exc.status_code, detail=error_payload(message=exc.message))


@router.post("/set-role", response_model=AccountActionResponse, response_model_exclude_none=True)
async def set_role(
    payload: SetRoleRequest = Depends(_json_body(SetRoleRequest)),
    container: ServiceContainer = Depends(get_container),
):
    try:
        account = await container.roles.set_role(
            uid=payload.uid,
            email=payload.email,
            role=payload.role,
        )
    except ServiceError as exc:
        raise _admin_http_error("set-role", exc)
    return AccountActionResponse(ok=True, uid=account.uid, role=Role.parse(payload.role).value)


@router.post("/delete-user", response_model=AccountActionResponse, response_model_exclude_none=True)
async def delete_user(
    payload: DeleteUserRequest = Depends(_json_body(DeleteUserRequest)),
    container: ServiceContainer = Depends(get_container),
):
    try:
        account = await container.roles.delete_user(uid=payload.uid, email=payload.email)
    except ServiceError as exc:
        raise _admin_http_error("delete-user", exc)
    return AccountActionResponse(ok=True, uid=account.uid)
