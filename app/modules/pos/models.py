"""
Modelos SQLAlchemy para el módulo POS (Point of Sale)

Este módulo maneja la operativa de caja de cada punto de venta:
- CashRegister: Caja del PDV (abierta/cerrada, monto inicial)
- POSTransaction: Ventas confirmadas, dentro o fuera de caja
- CashClosing: Arqueo inmutable generado en cada cierre (manual o automático)
- AutomaticClosingControl: Control de idempotencia del cierre automático

Arquitectura multi-tenant: Todas las tablas incluyen tenant_id
"""

from app.database.database import Base
from sqlalchemy import (
    Column, String, Boolean, Date, DateTime, ForeignKey, Integer, Numeric, Text,
    UniqueConstraint, Index, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin, utc_now
import enum


# ===== ENUMS =====

class TransactionStatus(str, enum.Enum):
    """Estados de transacción POS"""
    CONFIRMED = "confirmada"
    VOIDED = "anulada"


class TransactionType(str, enum.Enum):
    SALE = "venta"
    STAFF_CONSUMPTION = "consumo_staff"


class OffRegisterStatus(str, enum.Enum):
    """Estado de conciliación de una venta fuera de caja"""
    PENDING = "pendiente_caja"      # Aún no imputada a ningún cierre
    ASSIGNED = "imputada_caja"      # Imputada a una caja / cierre
    BALANCE_ONLY = "solo_balance"   # Sólo cuenta para el balance, nunca para un arqueo


# ===== MODELOS =====

class CashRegister(Base, TenantMixin, TimestampMixin):
    """
    Caja registradora del punto de venta

    Se crea una vez por PDV (de forma perezosa si hace falta) y alterna entre
    abierta y cerrada. Sólo puede existir una caja activa por PDV.
    """
    __tablename__ = "cash_registers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    pdv_id = Column(UUID(as_uuid=True), ForeignKey("pdvs.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    is_virtual = Column(Boolean, nullable=False, default=False)

    # activa = aprovisionada; abierta = habilitada para vender
    is_active = Column(Boolean, nullable=False, default=True)
    is_open = Column(Boolean, nullable=False, default=False, index=True)

    opening_float = Column(Numeric(15, 2), nullable=False, default=0)
    opened_at = Column(DateTime(timezone=True), nullable=True)
    opened_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)

    # Relationships
    pdv = relationship("PDV")
    closings = relationship("CashClosing", back_populates="cash_register", order_by="CashClosing.closed_at")

    __table_args__ = (
        Index(
            "uq_cash_register_active_pdv",
            "pdv_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )


class POSTransaction(Base, TenantMixin, TimestampMixin):
    """
    Transacción POS confirmada

    Las ventas registradas con la caja cerrada quedan marcadas como fuera de
    caja (`off_register`) hasta que se concilian en un cierre.
    """
    __tablename__ = "pos_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    pdv_id = Column(UUID(as_uuid=True), ForeignKey("pdvs.id"), nullable=False, index=True)
    cash_register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=True, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)

    transaction_type = Column(String(20), nullable=False, default=TransactionType.SALE.value)
    status = Column(String(20), nullable=False, default=TransactionStatus.CONFIRMED.value, index=True)
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False, default=0)
    payment_method_name = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    # Fuera de caja
    off_register = Column(Boolean, nullable=False, default=False, index=True)
    off_register_status = Column(String(20), nullable=True)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)
    reconciled_closing_id = Column(UUID(as_uuid=True), ForeignKey("cash_closings.id"), nullable=True, index=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)

    # Relationships
    cash_register = relationship("CashRegister")


class CashClosing(Base, TenantMixin, TimestampMixin):
    """
    Cierre de caja (arqueo)

    Snapshot inmutable generado en cada cierre. Clave única por
    (PDV, caja, fecha operativa) para que el cierre automático sea idempotente.
    """
    __tablename__ = "cash_closings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    pdv_id = Column(UUID(as_uuid=True), ForeignKey("pdvs.id"), nullable=False, index=True)
    cash_register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=False, index=True)
    closed_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    is_automatic = Column(Boolean, nullable=False, default=False)

    operating_date = Column(Date, nullable=False, index=True)
    opened_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    # Arqueo
    opening_float = Column(Numeric(15, 2), nullable=False, default=0)
    expected_amount = Column(Numeric(15, 2), nullable=False, default=0)
    counted_amount = Column(Numeric(15, 2), nullable=False, default=0)
    variance = Column(Numeric(15, 2), nullable=False, default=0)

    # Totales por medio de pago
    total_sales = Column(Numeric(15, 2), nullable=False, default=0)
    total_cash = Column(Numeric(15, 2), nullable=False, default=0)
    total_card = Column(Numeric(15, 2), nullable=False, default=0)
    total_transfer = Column(Numeric(15, 2), nullable=False, default=0)
    transaction_count = Column(Integer, nullable=False, default=0)

    notes = Column(Text, nullable=True)

    # Ventas fuera de caja incluidas en el arqueo
    include_off_register = Column(Boolean, nullable=False, default=False)
    off_register_included = Column(Integer, nullable=False, default=0)
    off_register_total = Column(Numeric(15, 2), nullable=False, default=0)

    # Resultado de la liquidación de consumos pendientes
    consumption_rule = Column(String(40), nullable=True)
    consumptions_settled = Column(Integer, nullable=False, default=0)
    consumptions_charged = Column(Numeric(15, 2), nullable=False, default=0)

    # Relationships
    cash_register = relationship("CashRegister", back_populates="closings")

    __table_args__ = (
        UniqueConstraint("pdv_id", "cash_register_id", "operating_date", name="uq_cash_closing_pdv_register_date"),
    )


class AutomaticClosingControl(Base, TenantMixin):
    """
    Control de cierre automático

    Una fila por (caja, fecha operativa, hora objetivo). La restricción única es
    la única garantía contra la doble ejecución del cierre automático.
    """
    __tablename__ = "automatic_closing_controls"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    pdv_id = Column(UUID(as_uuid=True), ForeignKey("pdvs.id"), nullable=False, index=True)
    cash_register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=False)
    operating_date = Column(Date, nullable=False)
    target_time = Column(String(5), nullable=False)
    closing_id = Column(UUID(as_uuid=True), ForeignKey("cash_closings.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("cash_register_id", "operating_date", "target_time", name="uq_auto_closing_register_date_time"),
    )
