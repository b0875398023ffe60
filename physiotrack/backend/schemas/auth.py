from typing import Literal

from pydantic import BaseModel, Field

UserRole = Literal["physiotherapist", "patient"]


class SignupRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=200)
    password: str = Field(..., min_length=8, max_length=200)
    display_name: str = Field(..., min_length=1, max_length=100)
    role: UserRole


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    role: UserRole
    email: str


class UserProfile(BaseModel):
    uid: str
    email: str
    display_name: str
    role: UserRole
    created_at: int
    assigned_physio_id: str | None = None


class PatientsResponse(BaseModel):
    patients: list[UserProfile]
