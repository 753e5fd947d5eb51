from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field

GlobalRole = Literal["user", "admin", "support"]


class BanRequest(BaseModel):
    id: int
    active: bool


class RoleRequest(BaseModel):
    id: int
    role: GlobalRole


class AdminCompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = ""


class AdminCompanyUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = ""


class SupportMessageIn(BaseModel):
    message: str = Field(min_length=1)


SettingsUpdate = Dict[str, Optional[str]]
