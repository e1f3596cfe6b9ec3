from pydantic import BaseModel, Field
from typing import Optional


class CredentialRecord(BaseModel):
    identity: str
    secret_hash: str
    is_controller_eligible: bool = False


class VerifiedCredential(BaseModel):
    identity: str
    is_controller_eligible: bool = False


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1)
    is_admin: bool = False


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    token: str
    is_admin: bool


class BroadcastRequest(BaseModel):
    message: str
    secret: Optional[str] = None
