from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from loyaltymart_api.db.base import Base


class Withdrawal(Base):
    """Immutable record of points spent against an order number."""

    __tablename__ = "withdrawals"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_number = Column(String, nullable=False)
    sum = Column(Numeric(14, 2), nullable=False)
    processed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
