"""
Admin-approved signup: the code goes to the administrator, who passes it on
to the applicant out of band.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from .dependencies import ServiceContainer, get_container
from .exceptions import ServiceError
from .schemas.api_response import CodeFlowResponse, code_flow_payload


router = APIRouter(prefix="/api", tags=["Signup"])


class GenerateAuthCodeRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, populate_by_name=True)

    email: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")


class VerifyAuthCodeRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    email: Optional[str] = None
    code: Optional[str] = None
    otp: Optional[str] = None


@router.post("/generate-auth-code", response_model=CodeFlowResponse)
async def generate_auth_code(
    payload: Optional[GenerateAuthCodeRequest] = None,
    container: ServiceContainer = Depends(get_container),
):
    payload = payload or GenerateAuthCodeRequest()
    flow = container.signup_issuance
    try:
        await flow.issue(
            payload.email,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
        )
    except ServiceError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail=code_flow_payload(success=False, message=exc.message),
        )
    return CodeFlowResponse(success=True, message=flow.settings.messages.sent)


@router.post("/verify-auth-code", response_model=CodeFlowResponse)
async def verify_auth_code(
    payload: Optional[VerifyAuthCodeRequest] = None,
    container: ServiceContainer = Depends(get_container),
):
    payload = payload or VerifyAuthCodeRequest()
    flow = container.signup_verification
    try:
        await flow.verify(payload.email, payload.code or payload.otp)
    except ServiceError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail=code_flow_payload(success=False, message=exc.message),
        )
    return CodeFlowResponse(success=True, message=flow.settings.messages.verified)
