"""Accrual service domain models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from loyaltymart_api.db.base import Base
from loyaltymart_api.models.order import OrderStatusEnum


class RewardTypeEnum(str, Enum):
    PERCENT = "percent"
    POINTS = "points"

    @classmethod
    def parse(cls, value: str) -> "RewardTypeEnum":
        """Resolve a wire value, accepting the legacy ``%`` / ``pt`` aliases."""

        normalized = value.strip().lower()
        aliases = {"%": cls.PERCENT, "pt": cls.POINTS}
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


class AccrualOrder(Base):
    """Order registered with the accrual service together with its goods."""

    __tablename__ = "accrual_orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    number = Column(String, nullable=False, unique=True, index=True)
    status = Column(
        SqlEnum(OrderStatusEnum, name="accrual_order_status_enum"),
        nullable=False,
        default=OrderStatusEnum.REGISTERED,
        server_default=OrderStatusEnum.REGISTERED.value,
    )
    accrual = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    goods = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class RewardMechanic(Base):
    """Reward rule matched against goods descriptions."""

    __tablename__ = "reward_mechanics"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    match = Column(String, nullable=False, unique=True, index=True)
    reward = Column(Numeric(12, 2), nullable=False)
    reward_type = Column(SqlEnum(RewardTypeEnum, name="reward_type_enum"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
