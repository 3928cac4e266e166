"""
Política de liquidación de consumos pendientes al cerrar la caja.

Se invoca desde el cierre manual y el automático, dentro de la transacción
del cierre: acá sólo se hace flush, el commit y la auditoría son del llamador.
"""
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.common.mixins import utc_now
from app.modules.consumptions.models import StaffConsumption, ConsumptionSettlement, SettlementStatus
from app.modules.consumptions.schemas import SettlementSummary

logger = logging.getLogger(__name__)

# regla de cierre -> (regla registrada en la liquidación, estado final)
CLOSING_RULES = {
    "cobro_automatico_venta": ("precio_venta", SettlementStatus.CHARGED),
    "cobro_automatico_costo": ("precio_costo", SettlementStatus.CHARGED),
    "perdonado": ("perdonado", SettlementStatus.FORGIVEN),
}

DEFAULT_CLOSING_REASON = "Aplicacion automatica al cierre de caja"


def _pending_query(db: Session, tenant_id: UUID, pdv_id: UUID):
    return db.query(StaffConsumption).filter(
        StaffConsumption.tenant_id == tenant_id,
        StaffConsumption.pdv_id == pdv_id,
        StaffConsumption.settlement_status == SettlementStatus.PENDING.value
    )


def count_pending_consumptions(db: Session, tenant_id: UUID, pdv_id: UUID) -> Tuple[int, Decimal]:
    """Cantidad y total a precio de venta de los consumos pendientes del PDV."""
    count, total = db.query(
        func.count(StaffConsumption.id),
        func.coalesce(func.sum(StaffConsumption.sale_total), 0)
    ).filter(
        StaffConsumption.tenant_id == tenant_id,
        StaffConsumption.pdv_id == pdv_id,
        StaffConsumption.settlement_status == SettlementStatus.PENDING.value
    ).one()
    return int(count or 0), Decimal(str(total or 0))


def settle_pending_consumptions(db: Session, tenant_id: UUID, pdv_id: UUID, closing_id: Optional[UUID],
                                rule: str, acting_user_id: Optional[UUID] = None,
                                reason: str = DEFAULT_CLOSING_REASON) -> SettlementSummary:
    """
    Aplicar la regla de cierre a todos los consumos pendientes del PDV.

    `pendiente_siguiente_caja` y `no_permitir_cierre` no mutan nada; el
    bloqueo de `no_permitir_cierre` se valida antes, en el cierre.
    """
    if rule not in CLOSING_RULES:
        return SettlementSummary(rule=rule, count=0, total_charged=Decimal("0"))

    settlement_rule, final_status = CLOSING_RULES[rule]
    pending = _pending_query(db, tenant_id, pdv_id).with_for_update().all()
    if not pending:
        return SettlementSummary(rule=rule, count=0, total_charged=Decimal("0"))

    now = utc_now()
    total_charged = Decimal("0")

    for consumption in pending:
        if rule == "cobro_automatico_venta":
            amount = Decimal(consumption.sale_total or 0)
        elif rule == "cobro_automatico_costo":
            amount = Decimal(consumption.cost_total or 0)
        else:
            amount = Decimal("0")

        total_charged += amount
        db.add(ConsumptionSettlement(
            tenant_id=tenant_id,
            consumption_id=consumption.id,
            admin_id=acting_user_id,
            closing_id=closing_id,
            rule=settlement_rule,
            rule_value=None,
            amount_charged=amount,
            reason=reason,
            created_at=now
        ))
        consumption.settlement_status = final_status.value
        consumption.settled_at = now

    db.flush()
    logger.info(
        f"Consumos liquidados al cierre: PDV {pdv_id}, regla {rule}, "
        f"cantidad {len(pending)}, total {total_charged}"
    )
    return SettlementSummary(rule=rule, count=len(pending), total_charged=total_charged)
