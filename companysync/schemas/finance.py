from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

FinanceType = Literal["income", "expense"]
FinanceStatus = Literal["pending", "approved", "rejected"]


class FinanceRecordCreate(BaseModel):
    type: FinanceType
    category: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=1, max_length=10)
    description: Optional[str] = ""
    status: FinanceStatus = "pending"


class FinanceRecordUpdate(BaseModel):
    type: Optional[FinanceType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=10)
    description: Optional[str] = None
    # Only owners/admins may change status through this endpoint
    status: Optional[FinanceStatus] = None


class StatusChange(BaseModel):
    status: FinanceStatus


ReportType = Literal["yearly", "quarterly", "summary"]
ReportStatus = Literal["active", "archived"]


class ReportCreate(BaseModel):
    title: str = Field(min_length=1, max_length=128)
    period: Optional[str] = Field(default="", max_length=64)
    type: ReportType
    # Computed from approved finance records when omitted or empty
    data: Optional[Dict[str, Any]] = None
    generate_file: bool = False


class ReportUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=128)
    period: Optional[str] = Field(default=None, max_length=64)
    type: Optional[ReportType] = None
    status: Optional[ReportStatus] = None
    data: Optional[Dict[str, Any]] = None
