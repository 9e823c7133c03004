from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class UserOut(BaseModel):
    id: str
    owner_id: str
    email: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BudgetIn(BaseModel):
    # No range checks: amount and period are the caller's responsibility.
    period: Optional[str] = None
    amount: Optional[float] = None
    categories: Optional[list[str]] = None


class BudgetUpdate(BaseModel):
    period: Optional[str] = None
    amount: Optional[float] = None
    categories: Optional[list[str]] = None


class BudgetOut(BaseModel):
    id: str
    owner_id: str
    period: Optional[str] = None
    amount: Optional[float] = None
    categories: Optional[list[str]] = None
    created_at: datetime


class TransactionIn(BaseModel):
    amount: Optional[float] = None
    category: Optional[str] = None
    date: Optional[datetime] = None
    description: Optional[str] = None


class TransactionUpdate(BaseModel):
    amount: Optional[float] = None
    category: Optional[str] = None
    date: Optional[datetime] = None
    description: Optional[str] = None


class TransactionOut(BaseModel):
    id: str
    owner_id: str
    amount: Optional[float] = None
    category: Optional[str] = None
    date: Optional[datetime] = None
    description: Optional[str] = None
    created_at: datetime


class CategoryIn(BaseModel):
    name: Optional[str] = None
    emoji: Optional[str] = None


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    emoji: Optional[str] = None


class CategoryOut(BaseModel):
    id: str
    owner_id: str
    name: str
    emoji: Optional[str] = None
    created_at: datetime
    updated_at: datetime
