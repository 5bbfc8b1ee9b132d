"""Employee model for the database."""

from sqlalchemy import Boolean, Column, Date, Integer, Numeric, String
from sqlalchemy.orm import relationship

from components.core.database import Base


class Employee(Base):
    """Employee directory entry: salary and payout contact details."""
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    employee_number = Column(String(50), unique=True, nullable=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    base_salary = Column(Numeric(12, 2), nullable=True)
    phone_number = Column(String(20), unique=True, nullable=True, index=True)  # Canonical 254XXXXXXXXX
    email = Column(String(255), nullable=True)
    employment_end_date = Column(Date, nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)

    # Relationships
    advances = relationship("Advance", back_populates="employee", foreign_keys="Advance.employee_id")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
