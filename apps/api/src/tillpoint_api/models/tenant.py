"""Store tenants that own customers, ledgers and loyalty configuration."""

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tillpoint_api.db.base import Base


class Tenant(Base):
    """A retail business operating one or more tills."""

    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    slug = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    timezone = Column(String, nullable=False, default="UTC", server_default="UTC")
    # Currency spent per earned point; null falls back to settings.loyalty_points_per_unit.
    points_per_unit = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    customers = relationship("Customer", back_populates="tenant")
