"""Pydantic schemas for employee data validation."""

from datetime import date
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel


class EmployeeBase(BaseModel):
    """Base employee schema."""
    first_name: str
    last_name: str
    employee_number: Optional[str] = None
    base_salary: Optional[Decimal] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    employment_end_date: Optional[date] = None


class EmployeeCreate(EmployeeBase):
    """Schema for employee creation."""
    is_admin: bool = False


class Employee(EmployeeBase):
    """Schema for employee response."""
    id: int
    is_admin: bool = False

    class Config:
        from_attributes = True
