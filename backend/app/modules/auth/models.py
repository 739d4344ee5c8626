from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint

from app.db import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = {"schema": "auth"}

    Id = Column(Integer, primary_key=True, index=True)
    Username = Column(String(120), nullable=False, unique=True, index=True)
    FirstName = Column(String(120))
    LastName = Column(String(120))
    Email = Column(String(254))
    FamilyId = Column(Integer, index=True)
    Role = Column(String(20), nullable=False, default="Parent")
    IsActive = Column(Boolean, default=True, nullable=False)
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserModuleRole(Base):
    __tablename__ = "user_module_roles"
    __table_args__ = (
        UniqueConstraint("UserId", "ModuleName", name="uq_auth_user_module_roles"),
        {"schema": "auth"},
    )

    Id = Column(Integer, primary_key=True, index=True)
    UserId = Column(Integer, nullable=False, index=True)
    ModuleName = Column(String(80), nullable=False, index=True)
    Role = Column(String(20), nullable=False)
    CreatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)
    UpdatedAt = Column(DateTime, default=datetime.utcnow, nullable=False)
