"""
Esquemas Pydantic para el módulo POS (Point of Sale)

Define la validación de datos de entrada y salida para:
- Admisión de operaciones (venta / consumo) según el estado de la caja
- CashRegister: apertura, ajuste de monto inicial y cierre con arqueo
- CashClosing: cierres registrados
- Ventas confirmadas y ventas fuera de caja

Todas las validaciones respetan la arquitectura multi-tenant.
"""

from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List, Literal
from uuid import UUID
from datetime import date, datetime
from enum import Enum

from app.modules.consumptions.schemas import SettlementSummary


# ===== ENUMS =====

class OperationType(str, Enum):
    SALE = "sale"
    CONSUMPTION = "consumption"


class ClosedRegisterAction(str, Enum):
    """Decisión explícita del llamador cuando la caja está cerrada"""
    OPEN = "abrir"
    OFF_REGISTER = "fuera_caja"


class OffRegisterAction(str, Enum):
    ASSIGN_TO_CURRENT = "imputar_a_caja_actual"
    BALANCE_ONLY = "marcar_solo_balance"
    LEAVE_PENDING = "dejar_pendiente"


# ===== ADMISIÓN =====

class AdmissionInputs(BaseModel):
    """Entradas del llamador para decidir sobre una caja cerrada"""
    closed_register_action: Optional[ClosedRegisterAction] = Field(None, description="abrir | fuera_caja")
    opening_float: Optional[Decimal] = Field(None, ge=0, description="Monto inicial si se abre la caja")
    user_id: Optional[UUID] = Field(None, description="Usuario que opera (para roles de apertura)")


class AdmissionResult(BaseModel):
    """
    Resultado de admitir una operación.

    `decision_required = True` no es un error: el llamador debe reintentar con
    una acción explícita (`suggested_action`).
    """
    tenant_id: UUID
    register_id: UUID
    register_open: bool
    off_register: bool = False
    register_opened_now: bool = False
    decision_required: bool = False
    requires_opening_float_first_sale: bool = False
    can_open_register: bool = False
    allow_off_register: bool = False
    suggested_action: Optional[ClosedRegisterAction] = None
    message: Optional[str] = None
    code: Optional[str] = None

    @property
    def admitted(self) -> bool:
        return not self.decision_required


# ===== CASH REGISTER =====

class CashRegisterOut(BaseModel):
    id: UUID
    pdv_id: UUID
    name: str
    is_virtual: bool
    is_active: bool
    is_open: bool
    opening_float: Decimal
    opened_at: Optional[datetime] = None
    opened_by: Optional[UUID] = None

    model_config = {"from_attributes": True}


class CashRegisterOpen(BaseModel):
    """Esquema para abrir caja registradora"""
    opening_float: Decimal = Field(default=Decimal("0"), ge=0, description="Monto inicial")


class CashRegisterAdjust(BaseModel):
    """Ajuste del monto inicial de una caja abierta"""
    new_opening_float: Decimal = Field(..., ge=0, description="Nuevo monto inicial")
    reason: Optional[str] = Field(None, max_length=500, description="Motivo del ajuste")


class CashRegisterClose(BaseModel):
    """Esquema para cerrar caja registradora con arqueo"""
    counted_amount: Decimal = Field(..., ge=0, description="Monto contado en caja")
    notes: Optional[str] = Field(None, max_length=1000, description="Observaciones del cierre")
    include_off_register: Optional[bool] = Field(
        None, description="Incluir ventas fuera de caja pendientes (si no se envía aplica la configuración)"
    )
    confirm_pending_consumptions: bool = Field(
        False, description="Confirma aplicar la regla configurada a los consumos pendientes"
    )


class PeriodTotals(BaseModel):
    """Totales del período de la caja por medio de pago"""
    total_sales: Decimal = Decimal("0")
    total_cash: Decimal = Decimal("0")
    total_card: Decimal = Decimal("0")
    total_transfer: Decimal = Decimal("0")
    transaction_count: int = 0


class OffRegisterPending(BaseModel):
    count: int = 0
    total: Decimal = Decimal("0")


class ManualCloseResult(BaseModel):
    closing_id: UUID
    register_id: UUID
    operating_date: date
    opening_float: Decimal
    expected_amount: Decimal
    counted_amount: Decimal
    variance: Decimal
    totals: PeriodTotals
    include_off_register: bool
    off_register_included: int
    off_register_total: Decimal
    settlement: SettlementSummary


class CashClosingOut(BaseModel):
    id: UUID
    pdv_id: UUID
    cash_register_id: UUID
    closed_by: Optional[UUID] = None
    is_automatic: bool
    operating_date: date
    opened_at: Optional[datetime] = None
    closed_at: datetime
    opening_float: Decimal
    expected_amount: Decimal
    counted_amount: Decimal
    variance: Decimal
    total_sales: Decimal
    total_cash: Decimal
    total_card: Decimal
    total_transfer: Decimal
    transaction_count: int
    notes: Optional[str] = None
    include_off_register: bool
    off_register_included: int
    off_register_total: Decimal
    consumption_rule: Optional[str] = None
    consumptions_settled: int
    consumptions_charged: Decimal

    model_config = {"from_attributes": True}


class CashClosingList(BaseModel):
    closings: List[CashClosingOut]
    total: int
    limit: int
    offset: int


class SweepResult(BaseModel):
    points_of_sale_evaluated: int = 0
    closures_executed: int = 0


# ===== VENTAS =====

class SaleConfirm(BaseModel):
    """Confirmación de venta POS"""
    pdv_id: UUID = Field(..., description="Punto de venta")
    total: Decimal = Field(..., gt=0, description="Total de la venta")
    subtotal: Optional[Decimal] = Field(None, ge=0)
    payment_method_name: str = Field(..., min_length=1, max_length=50, description="efectivo, tarjeta, transferencia…")
    notes: Optional[str] = Field(None, max_length=500)
    closed_register_action: Optional[ClosedRegisterAction] = None
    opening_float: Optional[Decimal] = Field(None, ge=0)

    @field_validator('payment_method_name')
    @classmethod
    def validate_payment_method(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError('El medio de pago no puede estar vacío')
        return cleaned


class POSTransactionOut(BaseModel):
    id: UUID
    pdv_id: UUID
    cash_register_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    transaction_type: str
    status: str
    total: Decimal
    payment_method_name: Optional[str] = None
    off_register: bool
    off_register_status: Optional[str] = None
    reconciled_at: Optional[datetime] = None
    reconciled_closing_id: Optional[UUID] = None
    confirmed_at: datetime

    model_config = {"from_attributes": True}


class SaleConfirmResult(BaseModel):
    transaction: POSTransactionOut
    register_opened_now: bool = False


# ===== FUERA DE CAJA =====

class OffRegisterDecision(BaseModel):
    """Decisión masiva sobre ventas fuera de caja"""
    pdv_id: UUID
    transaction_ids: List[UUID] = Field(..., min_length=1)
    action: OffRegisterAction
    reason: Optional[str] = Field(None, max_length=500)
    open_register_if_needed: bool = False
    opening_float: Optional[Decimal] = Field(None, ge=0)
    payment_method_name: Optional[str] = Field(None, max_length=50)


class OffRegisterDecisionResult(BaseModel):
    action: OffRegisterAction
    processed: int
    total_amount: Decimal
    register_open: bool


class OffRegisterSummary(BaseModel):
    pending_count: int = 0
    pending_total: Decimal = Decimal("0")
    oldest_pending_minutes: int = 0


class OffRegisterList(BaseModel):
    transactions: List[POSTransactionOut]
    summary: OffRegisterSummary
    limit: int
    offset: int


OffRegisterStatusFilter = Literal["pendiente_caja", "imputada_caja", "solo_balance"]


class AdmissionRequest(BaseModel):
    """Request para admitir una operación en un PDV"""
    pdv_id: UUID
    operation_type: OperationType = OperationType.SALE
    closed_register_action: Optional[ClosedRegisterAction] = None
    opening_float: Optional[Decimal] = Field(None, ge=0)
