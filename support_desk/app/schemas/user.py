"""
Pydantic schemas for accounts.

Two kinds of account exist: staff members, who handle tickets, and
customer persons, who act on behalf of one customer organisation.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PersonRef(BaseModel):
    """Short reference to a person, used wherever a ticket or message
    names its creator, sender or handler."""

    id: str
    first_name: str = ""
    last_name: str = ""

    model_config = ConfigDict(from_attributes=True)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class UserRead(PersonRef):
    """Full account as returned by ``/auth/me``."""

    email: str
    role: str
    customer_id: Optional[str] = None


class LoginRequest(BaseModel):
    email: str = Field(..., description="Account e-mail")
    password: str = Field(..., description="Account password")


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
