"""
Consumos del staff y sus liquidaciones.

Un consumo nace `pendiente` y sólo pasa a un estado terminal por la política
de liquidación al cierre de caja o por una liquidación explícita de un admin.
"""
from app.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin, utc_now
import enum


class SettlementStatus(str, enum.Enum):
    """Estados de liquidación de un consumo"""
    PENDING = "pendiente"
    CHARGED = "cobrado"
    FORGIVEN = "perdonado"
    PARTIAL = "parcial"
    SETTLED = "liquidado"


class StaffConsumption(Base, TenantMixin, TimestampMixin):
    __tablename__ = "staff_consumptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    pdv_id = Column(UUID(as_uuid=True), ForeignKey("pdvs.id"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    items = Column(JSON, nullable=False, default=list)
    sale_total = Column(Numeric(15, 2), nullable=False, default=0)
    cost_total = Column(Numeric(15, 2), nullable=False, default=0)
    settlement_status = Column(String(20), nullable=False, default=SettlementStatus.PENDING.value, index=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    settlements = relationship("ConsumptionSettlement", back_populates="consumption", cascade="all, delete-orphan")


class ConsumptionSettlement(Base, TenantMixin):
    """Liquidación aplicada a un consumo (regla, monto cobrado, motivo)"""
    __tablename__ = "consumption_settlements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    consumption_id = Column(UUID(as_uuid=True), ForeignKey("staff_consumptions.id"), nullable=False, index=True)
    admin_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    closing_id = Column(UUID(as_uuid=True), ForeignKey("cash_closings.id"), nullable=True, index=True)
    rule = Column(String(20), nullable=False)
    rule_value = Column(Numeric(15, 2), nullable=True)
    amount_charged = Column(Numeric(15, 2), nullable=False, default=0)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    # Relationships
    consumption = relationship("StaffConsumption", back_populates="settlements")
