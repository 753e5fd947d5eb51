from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

MemberRole = Literal["owner", "admin", "member"]
AssignableRole = Literal["admin", "member"]


class CompanyCreate(BaseModel):
    name: str = Field(min_length=2, max_length=64)
    description: Optional[str] = Field(default="", max_length=256)


class CompanyUpdate(BaseModel):
    name: str = Field(min_length=2, max_length=64)
    description: Optional[str] = Field(default="", max_length=256)


class EmployeeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    role: AssignableRole = "member"
    salary: Optional[Decimal] = None
    note: Optional[str] = ""


class EmployeeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[AssignableRole] = None
    salary: Optional[Decimal] = None
    note: Optional[str] = None


class RoleChange(BaseModel):
    role: AssignableRole


class InviteCreate(BaseModel):
    email: EmailStr
    role: AssignableRole = "member"


class InviteAction(BaseModel):
    action: Literal["accept", "decline"]
