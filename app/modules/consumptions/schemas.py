from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional
from uuid import UUID
from decimal import Decimal
from datetime import datetime

from app.modules.consumptions.models import SettlementStatus

ClosingConsumptionRule = Literal[
    "pendiente_siguiente_caja",
    "cobro_automatico_venta",
    "cobro_automatico_costo",
    "perdonado",
    "no_permitir_cierre",
]
ManualSettlementRule = Literal["precio_venta", "precio_costo", "porcentaje", "monto_fijo", "perdonado"]


class ConsumptionItem(BaseModel):
    product_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=200)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    unit_cost: Decimal = Field(..., ge=0, description="Permite 0 para servicios")
    subtotal_sale: Decimal = Field(..., gt=0)
    subtotal_cost: Decimal = Field(..., ge=0)


class ConsumptionCreate(BaseModel):
    """Registro de consumo del staff"""
    user_id: UUID = Field(..., description="Staff que consume")
    pdv_id: UUID = Field(..., description="Punto de venta")
    closed_register_action: Optional[Literal["abrir", "fuera_caja"]] = Field(
        None, description="Decisión si la caja está cerrada"
    )
    opening_float: Optional[Decimal] = Field(None, ge=0, description="Monto inicial si se abre la caja")
    items: List[ConsumptionItem] = Field(..., min_length=1)


class ConsumptionOut(BaseModel):
    id: UUID
    pdv_id: UUID
    user_id: UUID
    items: list
    sale_total: Decimal
    cost_total: Decimal
    settlement_status: SettlementStatus
    settled_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ConsumptionList(BaseModel):
    consumptions: List[ConsumptionOut]
    total: int
    limit: int
    offset: int


class QuickCancelRequest(BaseModel):
    user_id: UUID
    pdv_id: UUID


class SettlementSummary(BaseModel):
    """Resultado de aplicar la política de consumos al cerrar la caja"""
    rule: ClosingConsumptionRule
    count: int = 0
    total_charged: Decimal = Decimal("0")


class ManualSettlementRequest(BaseModel):
    consumption_ids: List[UUID] = Field(..., min_length=1)
    rule: ManualSettlementRule
    rule_value: Optional[Decimal] = Field(None, ge=0, description="Porcentaje (0-100) o monto fijo")
    reason: Optional[str] = Field(None, max_length=500)
    payment_method: Optional[Literal["efectivo", "tarjeta", "transferencia"]] = None

    @field_validator("rule_value")
    @classmethod
    def validate_rule_value(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v > Decimal("1000000000"):
            raise ValueError("valor de regla fuera de rango")
        return v


class ManualSettlementResult(BaseModel):
    settled: int
    skipped: int
    skipped_ids: List[UUID] = Field(default_factory=list)
    rule: ManualSettlementRule
    total_charged: Decimal
    transactions_created: int = 0
    amount_in_register: Decimal = Decimal("0")
    amount_off_register: Decimal = Decimal("0")
