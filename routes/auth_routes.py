"""Authentication routes: OTP signup, login, password recovery and sessions"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.security import OAuth2PasswordBearer

from routes.schemas import (
    EmailRequest,
    LoginRequest,
    OtpVerificationRequest,
    ProfileSetupRequest,
    ResetPasswordRequest,
    SignupRequest,
)
from services.auth_service import CredentialService

router = APIRouter()
profile_router = APIRouter()
# session teardown is also served at /api/logout for the web client
session_router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_credential_service(request: Request) -> CredentialService:
    return request.app.state.credentials


@router.post("/signup", status_code=201)
async def signup(body: SignupRequest, service: CredentialService = Depends(get_credential_service)):
    return await run_in_threadpool(service.signup, body.username, body.full_name, body.email, body.password)


@router.post("/login")
async def login(body: LoginRequest, service: CredentialService = Depends(get_credential_service)):
    return await run_in_threadpool(service.login, body.email, body.password)


@router.post("/verify-otp")
async def verify_otp(body: OtpVerificationRequest, service: CredentialService = Depends(get_credential_service)):
    return await run_in_threadpool(service.verify_otp, body.email, body.code)


@router.post("/forgot-password")
async def forgot_password(body: EmailRequest, service: CredentialService = Depends(get_credential_service)):
    return await run_in_threadpool(service.forgot_password, body.email)


@router.post("/resend-otp")
async def resend_otp(body: EmailRequest, service: CredentialService = Depends(get_credential_service)):
    return await run_in_threadpool(service.resend_otp, body.email)


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, service: CredentialService = Depends(get_credential_service)):
    return await run_in_threadpool(
        service.reset_password, body.email, body.code, body.new_password, body.confirm_password
    )


@router.get("/user")
async def current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    service: CredentialService = Depends(get_credential_service),
):
    return await run_in_threadpool(service.get_current_user, token)


@router.api_route("/logout", methods=["GET", "POST"])
@session_router.api_route("/logout", methods=["GET", "POST"])
async def logout(
    token: Optional[str] = Depends(oauth2_scheme),
    service: CredentialService = Depends(get_credential_service),
):
    return service.logout(token)


@profile_router.post("/setup-profile")
async def setup_profile(
    body: ProfileSetupRequest,
    token: Optional[str] = Depends(oauth2_scheme),
    service: CredentialService = Depends(get_credential_service),
):
    return await run_in_threadpool(service.setup_profile, token, body.degree_program, body.subjects)
