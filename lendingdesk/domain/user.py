"""Domain models for users, roles and sessions."""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class Role(str, Enum):
    """Member role. Determines which actions the Authorization Gate allows."""
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class User(BaseModel):
    """Stored user record.

    The password hash lives only here and never leaves the identity layer;
    request handling works with ``Identity`` instead.

    Attributes:
        id: Unique identifier for the user
        username: Unique login name
        password_hash: bcrypt hash of the password
        role: Member role
        created_at: Registration timestamp
    """
    id: str
    username: str
    password_hash: str = Field(repr=False)
    role: Role = Role.STUDENT
    created_at: Optional[datetime] = None

    def to_identity(self) -> "Identity":
        return Identity(id=self.id, username=self.username, role=self.role)


class Identity(BaseModel):
    """Authenticated identity carried by the session for one request."""
    id: str
    username: str
    role: Role = Role.STUDENT

    class Config:
        json_schema_extra = {
            "example": {
                "id": "5f0c3e1d9a8b4c2d8e7f6a5b4c3d2e1f",
                "username": "ayesha",
                "role": "student",
            }
        }


class TokenData(BaseModel):
    """Session token payload data.

    Attributes:
        sub: Subject (user ID)
        username: Username at login time
        role: Role at login time
        exp: Token expiration time
        iat: Token issued at time
    """
    sub: str
    username: str
    role: Role
    exp: datetime
    iat: Optional[datetime] = None


class RegisterRequest(BaseModel):
    """Registration request. Missing fields are reported by the identity
    service rather than by schema validation."""
    username: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "username": "ayesha",
                "password": "secure_password123",
                "role": "student"
            }
        }


class LoginRequest(BaseModel):
    """Login credentials request."""
    username: Optional[str] = None
    password: Optional[str] = None
