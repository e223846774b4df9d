# pantry/models.py

import uuid
from sqlalchemy import Column, String, Float, Boolean, DateTime, ForeignKey, CheckConstraint
from datetime import datetime
from .database import Base


def new_id() -> str:
    return str(uuid.uuid4())


# Auth service tables: identities and live sessions

class AuthUser(Base):
    __tablename__ = "auth_users"
    id            = Column(String(36), primary_key=True, default=new_id)
    email         = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    created_at    = Column(DateTime, default=datetime.utcnow, nullable=False)

class AuthSession(Base):
    __tablename__ = "auth_sessions"
    id           = Column(String(36), primary_key=True, default=new_id)
    user_id      = Column(String(36), ForeignKey("auth_users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at   = Column(DateTime, default=datetime.utcnow, nullable=False)
    refreshed_at = Column(DateTime, nullable=True)


# Application tables

class User(Base):
    __tablename__ = "users"
    id             = Column(String(36), primary_key=True, default=new_id)
    email          = Column(String, unique=True, index=True, nullable=False)
    full_name      = Column(String, nullable=False)
    is_super_admin = Column(Boolean, default=False, nullable=False)
    is_approved    = Column(Boolean, default=False, nullable=False)
    created_at     = Column(DateTime, default=datetime.utcnow, nullable=False)

class Item(Base):
    __tablename__ = "items"
    id                = Column(String(36), primary_key=True, default=new_id)
    name              = Column(String, nullable=False, index=True)
    quantity          = Column(Float, nullable=False, default=0)
    unit              = Column(String(10), nullable=False)
    category          = Column(String, nullable=True)
    created_by        = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at        = Column(DateTime, default=datetime.utcnow, nullable=False)
    removal_requested = Column(Boolean, default=False, nullable=False)
    requested_by      = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    requested_at      = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_items_quantity_non_negative"),
    )

class Withdrawal(Base):
    __tablename__ = "withdrawals"
    id           = Column(String(36), primary_key=True, default=new_id)
    # nullable so the usage log survives a hard-deleted item
    item_id      = Column(String(36), ForeignKey("items.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id      = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    quantity     = Column(Float, nullable=False)
    withdrawn_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
