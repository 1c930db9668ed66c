from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
import uuid
from marketchat.db.base import Base

USER_ROLES = ("customer", "seller", "admin")


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    email = Column(String, nullable=False, unique=True)
    full_name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="customer")  # customer/seller/admin
    avatar_url = Column(String, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
