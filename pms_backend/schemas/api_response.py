from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel


class CodeFlowResponse(BaseModel):
    """Body of the code issuance/verification endpoints."""

    success: bool
    message: str


class AccountActionResponse(BaseModel):
    """Body of the account and admin endpoints."""

    ok: bool
    uid: Optional[str] = None
    role: Optional[str] = None
    error: Optional[str] = None


def code_flow_payload(*, success: bool, message: str) -> Dict[str, Any]:
    return CodeFlowResponse(success=success, message=message).model_dump()


def error_payload(*, message: str = "Request failed") -> Dict[str, Any]:
    return AccountActionResponse(ok=False, error=message).model_dump(exclude_none=True)
