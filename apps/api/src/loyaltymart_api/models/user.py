from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from loyaltymart_api.db.base import Base


class User(Base):
    """Mart user together with the point balance columns."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("current_balance >= 0", name="ck_users_current_balance_non_negative"),
        CheckConstraint("withdrawn >= 0", name="ck_users_withdrawn_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    login = Column(String, nullable=False, unique=True, index=True)
    current_balance = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    withdrawn = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
