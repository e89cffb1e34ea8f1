"""Request payloads for the auth and profile endpoints.

Field names follow the web client (camelCase); snake_case is accepted too.
Policy checks (domain, password length, OTP format) live in the service layer.
"""
from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignupRequest(_Payload):
    username: str
    full_name: str
    email: str
    password: str


class LoginRequest(_Payload):
    email: str
    password: str = Field(..., min_length=1)


class EmailRequest(_Payload):
    email: str


class OtpVerificationRequest(_Payload):
    email: str
    code: str


class ResetPasswordRequest(_Payload):
    email: str
    code: str
    new_password: str
    confirm_password: str


class ProfileSetupRequest(_Payload):
    degree_program: str
    subjects: List[str]
