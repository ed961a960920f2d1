"""Schemas for gateway user authentication."""

from pydantic import BaseModel, EmailStr, Field


class Token(BaseModel):
    """Bearer token returned by ``/auth/login``."""

    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    """Claims read from a bearer token; ``username`` comes from ``sub``."""

    username: str


class UserRegister(BaseModel):
    """Self-registration of a gateway user."""

    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(..., min_length=8, max_length=128)
