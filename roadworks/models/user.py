import enum
from sqlalchemy import Column, String, Boolean, DateTime, Enum
from sqlalchemy.sql import func

from roadworks.core.db import Base


class UserRole(str, enum.Enum):
    OPERATOR = "OPERATOR"      # contractor / department staff running the work
    REVIEWER = "REVIEWER"      # peer reviewer of submitted evidence
    AUTHORITY = "AUTHORITY"    # government authority: final decisions, closing
    ADMIN = "ADMIN"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)  # uuid string
    username = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=False)
    department = Column(String, nullable=True)
    role = Column(Enum(UserRole), nullable=False)
    password_hash = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
