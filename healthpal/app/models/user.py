"""
Accounts for every HealthPal role.

Patients own sponsorships and book consultations, donors fund them, doctors
accept and run consultations. Profile details beyond contact data are not
stored; email and phone are what the notifier needs.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from healthpal.app.db.session import Base
from healthpal.app.models.enums import UserRole, enum_values


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(150), nullable=False)
    # Stored lower-cased by the auth endpoints
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(30), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    role = Column(Enum(UserRole, values_callable=enum_values), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, role='{self.role.value}', email='{self.email}')>"
