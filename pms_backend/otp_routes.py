"""
Email OTP endpoints: request a code, check a code, and sign up with a code.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from .dependencies import ServiceContainer, get_container
from .exceptions import ServiceError
from .schemas.api_response import (
    AccountActionResponse,
    CodeFlowResponse,
    code_flow_payload,
    error_payload,
)


logger = logging.getLogger(__name__)

router = APIRouter(tags=["OTP"])


class SendOtpRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    email: Optional[str] = None


class VerifyOtpRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    email: Optional[str] = None
    otp: Optional[str] = None
    code: Optional[str] = None

    @property
    def presented_code(self) -> Optional[str]:
        return self.otp or self.code


class SignupWithOtpRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, populate_by_name=True)

    email: Optional[str] = None
    password: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")
    otp: Optional[str] = None
    code: Optional[str] = None

    @property
    def presented_code(self) -> Optional[str]:
        return self.otp or self.code


def _code_flow_http_error(exc: ServiceError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail=code_flow_payload(success=False, message=exc.message),
    )


@router.post("/send-otp", response_model=CodeFlowResponse)
async def send_otp(
    payload: Optional[SendOtpRequest] = None,
    container: ServiceContainer = Depends(get_container),
):
    payload = payload or SendOtpRequest()
    flow = container.otp_issuance
    try:
        await flow.issue(payload.email)
    except ServiceError as exc:
        raise _code_flow_http_error(exc)
    return CodeFlowResponse(success=True, message=flow.settings.messages.sent)


@router.post("/verify-otp", response_model=CodeFlowResponse)
async def verify_otp(
    payload: Optional[VerifyOtpRequest] = None,
    container: ServiceContainer = Depends(get_container),
):
    payload = payload or VerifyOtpRequest()
    flow = container.otp_verification
    try:
        await flow.verify(payload.email, payload.presented_code)
    except ServiceError as exc:
        raise _code_flow_http_error(exc)
    return CodeFlowResponse(success=True, message=flow.settings.messages.verified)


@router.post(
    "/api/auth/signup-with-otp",
    response_model=AccountActionResponse,
    response_model_exclude_none=True,
)
async def signup_with_otp(
    payload: Optional[SignupWithOtpRequest] = None,
    container: ServiceContainer = Depends(get_container),
):
    payload = payload or SignupWithOtpRequest()
    try:
        account = await container.accounts.signup_with_otp(
            container.otp_verification,
            email=payload.email,
            password=payload.password,
            code=payload.presented_code,
            display_name=payload.display_name,
        )
    except ServiceError as exc:
        if exc.status_code >= 500:
            logger.error("signup-with-otp failed: %s", exc)
        raise HTTPException(status_code=exc.status_code, detail=error_payload(message=exc.message))
    return AccountActionResponse(ok=True, uid=account.uid)
