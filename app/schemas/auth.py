"""Pydantic schemas for authentication endpoints.

Fields default to empty strings so a missing field reaches the handler and
gets the same 400 response as a blank one.
"""

from datetime import datetime

from pydantic import BaseModel


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class RegisterRequest(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""


class UserResponse(BaseModel):
    id: str
    name: str
    email: str


class SessionResponse(BaseModel):
    user: UserResponse
    token: str


class ForgotPasswordRequest(BaseModel):
    email: str = ""


class ForgotPasswordResponse(BaseModel):
    ok: bool = True
    token: str | None = None
    exp: datetime | None = None


class ResetPasswordRequest(BaseModel):
    token: str = ""
    password: str = ""


class OkResponse(BaseModel):
    ok: bool = True


class ClaimsResponse(BaseModel):
    user_id: str
    email: str
    name: str
    issued_at: int
    expires_at: int
