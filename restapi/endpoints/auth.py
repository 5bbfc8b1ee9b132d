"""Actor resolution for authenticated endpoints."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from components.core.init_db import get_db
from components.core.security import verify_token
from components.employee.models import Employee
from components.employee.repository import EmployeeRepository

bearer_scheme = HTTPBearer()


async def get_current_employee(
    db: AsyncSession = Depends(get_db),
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
) -> Employee:
    """Get the acting employee from the bearer JWT."""
    payload = verify_token(credentials.credentials)
    if payload is None or not str(payload.get("sub", "")).isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    employee = await EmployeeRepository(db).get_by_id(int(payload["sub"]))
    if employee is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Employee not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return employee


async def require_admin(current: Employee = Depends(get_current_employee)) -> Employee:
    """Allow only administrators through."""
    if not current.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator privileges required",
        )
    return current
