"""Repository for employee directory lookups."""

from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from components.core.exceptions import ConfigurationError, NotFoundError
from components.employee.models import Employee
from components.employee.schemas import EmployeeCreate
from components.employee.utils import normalize_phone


class EmployeeRepository:
    """Repository for employee operations."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def create(self, employee: EmployeeCreate) -> Employee:
        """Create a new employee."""
        db_employee = Employee(
            first_name=employee.first_name,
            last_name=employee.last_name,
            employee_number=employee.employee_number,
            base_salary=employee.base_salary,
            phone_number=normalize_phone(employee.phone_number),
            email=employee.email,
            employment_end_date=employee.employment_end_date,
            is_admin=employee.is_admin,
        )
        self.session.add(db_employee)
        await self.session.commit()
        await self.session.refresh(db_employee)
        return db_employee

    async def get_by_id(self, employee_id: int) -> Optional[Employee]:
        """Get employee by ID."""
        result = await self.session.execute(
            select(Employee).where(Employee.id == employee_id)
        )
        return result.scalar_one_or_none()

    async def get(self, employee_id: int) -> Employee:
        """Get employee by ID or raise NotFoundError."""
        employee = await self.get_by_id(employee_id)
        if employee is None:
            raise NotFoundError(f"Employee #{employee_id} not found")
        return employee

    async def get_with_salary(self, employee_id: int) -> Employee:
        """Get an employee that has a usable base salary."""
        employee = await self.get(employee_id)
        if not employee.base_salary or employee.base_salary <= 0:
            raise ConfigurationError(f"Employee #{employee_id} base salary not set")
        return employee

    async def get_by_phone(self, phone_number: Optional[str]) -> Optional[Employee]:
        """Get employee by phone number in any accepted format."""
        canonical = normalize_phone(phone_number)
        if canonical is None:
            return None
        result = await self.session.execute(
            select(Employee).where(Employee.phone_number == canonical)
        )
        return result.scalar_one_or_none()
