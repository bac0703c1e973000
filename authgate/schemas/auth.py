from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional

from authgate.utils.validators import validate_password, validate_username


class RegisterRequest(BaseModel):
    """Email/username/password registration request"""
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30)
    password: str = Field(..., max_length=128)
    confirm_password: str
    accept_terms: bool = False
    remember_me: bool = False

    @field_validator("email")
    def normalise_email(cls, v):
        return v.lower()

    @field_validator("username")
    def username_rules(cls, v):
        return validate_username(v)

    @field_validator("password")
    def password_strength(cls, v):
        return validate_password(v)

    @field_validator("confirm_password")
    def passwords_match(cls, v, info):
        data = info.data if info and info.data else {}
        if "password" in data and v != data["password"]:
            raise ValueError("Passwords do not match")
        return v

    @field_validator("accept_terms")
    def terms_accepted(cls, v):
        if not v:
            raise ValueError("You must accept the terms and conditions")
        return v


class LoginRequest(BaseModel):
    """Email/password login request"""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    remember_me: bool = False

    @field_validator("email")
    def normalise_email(cls, v):
        return v.lower()


class RefreshTokenRequest(BaseModel):
    # Falls back to the refresh-token cookie when omitted
    refresh_token: Optional[str] = None


class LogoutRequest(BaseModel):
    logout_all: bool = False
    refresh_token: Optional[str] = None


class GoogleOAuthRequest(BaseModel):
    """Google OAuth token verification"""
    id_token: str
    remember_me: bool = False


class ChangePasswordRequest(BaseModel):
    current_password: Optional[str] = None
    new_password: str = Field(..., max_length=128)

    @field_validator("new_password")
    def password_strength(cls, v):
        return validate_password(v)


class ChangeUsernameRequest(BaseModel):
    username: str

    @field_validator("username")
    def username_rules(cls, v):
        return validate_username(v)


class DeleteAccountRequest(BaseModel):
    password: Optional[str] = None
