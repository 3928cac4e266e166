"""
Servicios de consumos del staff.

- Registro: admite la operación `consumption` en la caja del PDV antes de
  guardar el consumo como `pendiente`.
- Cancelación rápida: deshace el último consumo del staff dentro de una
  ventana corta.
- Liquidación manual: acción explícita de un admin con reglas precio_venta,
  precio_costo, porcentaje, monto_fijo o perdonado. Los montos cobrados
  entran a la caja como transacciones `consumo_staff`.
"""
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from fastapi import HTTPException, status
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.common.exceptions import CajaDomainError, internal_error, REGLA_LIQUIDACION_INVALIDA
from app.common.localtime import ensure_utc
from app.common.mixins import utc_now
from app.modules.audit.service import AuditLogger, RequestContext
from app.modules.consumptions.models import StaffConsumption, ConsumptionSettlement, SettlementStatus
from app.modules.consumptions.schemas import (
    ConsumptionCreate, ConsumptionOut, QuickCancelRequest, ManualSettlementRequest, ManualSettlementResult
)
from app.modules.pos.models import POSTransaction, TransactionStatus, TransactionType, OffRegisterStatus
from app.modules.pos.repository import CashRegisterRepository
from app.modules.pos.schemas import AdmissionInputs, AdmissionResult, OperationType
from app.modules.pos.services import CashRegisterLifecycleService

logger = logging.getLogger(__name__)

QUICK_CANCEL_WINDOW = timedelta(seconds=5)
CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


class ConsumptionService:
    """Consumos del staff por PDV"""

    def __init__(self, db: Session):
        self.db = db
        self.lifecycle = CashRegisterLifecycleService(db)
        self.audit = AuditLogger(db)

    def register_consumption(self, tenant_id: UUID, data: ConsumptionCreate,
                             acting_user_id: Optional[UUID] = None, now: Optional[datetime] = None,
                             context: Optional[RequestContext] = None
                             ) -> Tuple[AdmissionResult, Optional[StaffConsumption]]:
        """
        Registrar un consumo pendiente.

        Si la admisión pide una decisión sobre la caja cerrada se devuelve sin
        consumo y no se guarda nada.
        """
        admission = self.lifecycle.admit_operation(
            tenant_id, data.pdv_id, OperationType.CONSUMPTION,
            AdmissionInputs(
                closed_register_action=data.closed_register_action,
                opening_float=data.opening_float,
                user_id=acting_user_id
            ),
            now=now,
            context=context
        )
        if admission.decision_required:
            return admission, None

        items = [item.model_dump(mode="json") for item in data.items]
        sale_total = _money(sum((item.subtotal_sale for item in data.items), Decimal("0")))
        cost_total = _money(sum((item.subtotal_cost for item in data.items), Decimal("0")))

        try:
            consumption = StaffConsumption(
                tenant_id=tenant_id,
                pdv_id=data.pdv_id,
                user_id=data.user_id,
                items=items,
                sale_total=sale_total,
                cost_total=cost_total,
                settlement_status=SettlementStatus.PENDING.value
            )
            self.db.add(consumption)
            self.db.commit()
            self.db.refresh(consumption)

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error registrando consumo en PDV {data.pdv_id}: {e}")
            raise internal_error()

        logger.info(f"Consumo {consumption.id} registrado para staff {data.user_id} en PDV {data.pdv_id}")
        self.audit.log(
            "consumo_registrado",
            tenant_id=tenant_id,
            pdv_id=data.pdv_id,
            user_id=acting_user_id,
            entity_type="consumo",
            entity_id=consumption.id,
            metadata={
                "staffId": data.user_id,
                "totalVenta": sale_total,
                "totalCosto": cost_total,
                "fueraCaja": admission.off_register,
            },
            context=context
        )
        return admission, consumption

    def quick_cancel(self, tenant_id: UUID, data: QuickCancelRequest, acting_user_id: Optional[UUID] = None,
                     now: Optional[datetime] = None,
                     context: Optional[RequestContext] = None) -> ConsumptionOut:
        """Anular el último consumo pendiente del staff si tiene menos de 5 segundos."""
        now = ensure_utc(now) if now else utc_now()

        consumption = self.db.query(StaffConsumption).filter(
            StaffConsumption.tenant_id == tenant_id,
            StaffConsumption.pdv_id == data.pdv_id,
            StaffConsumption.user_id == data.user_id,
            StaffConsumption.settlement_status == SettlementStatus.PENDING.value
        ).order_by(desc(StaffConsumption.created_at)).first()

        if consumption is None or now - ensure_utc(consumption.created_at) > QUICK_CANCEL_WINDOW:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No hay un consumo reciente para cancelar"
            )

        snapshot = ConsumptionOut.model_validate(consumption)
        consumption_id = consumption.id
        sale_total = consumption.sale_total
        try:
            self.db.delete(consumption)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error cancelando consumo {consumption_id}: {e}")
            raise internal_error()

        self.audit.log(
            "consumo_cancelado_rapido",
            tenant_id=tenant_id,
            pdv_id=data.pdv_id,
            user_id=acting_user_id,
            entity_type="consumo",
            entity_id=consumption_id,
            metadata={"staffId": data.user_id, "totalVenta": sale_total},
            context=context
        )
        return snapshot

    def list_consumptions(self, tenant_id: UUID, pdv_id: Optional[UUID] = None,
                          user_id: Optional[UUID] = None, settlement_status: Optional[str] = None,
                          limit: int = 100, offset: int = 0):
        query = self.db.query(StaffConsumption).filter(StaffConsumption.tenant_id == tenant_id)
        if pdv_id:
            query = query.filter(StaffConsumption.pdv_id == pdv_id)
        if user_id:
            query = query.filter(StaffConsumption.user_id == user_id)
        if settlement_status:
            query = query.filter(StaffConsumption.settlement_status == settlement_status)

        total = query.count()
        consumptions = query.order_by(desc(StaffConsumption.created_at)).offset(offset).limit(limit).all()
        return {"consumptions": consumptions, "total": total, "limit": limit, "offset": offset}

    # ----- liquidación manual -----

    @staticmethod
    def _charged_amount(consumption: StaffConsumption, request: ManualSettlementRequest) -> Decimal:
        sale_total = _money(consumption.sale_total)
        if request.rule == "precio_venta":
            return sale_total
        if request.rule == "precio_costo":
            return _money(consumption.cost_total)
        if request.rule == "porcentaje":
            return _money(sale_total * request.rule_value / Decimal("100"))
        if request.rule == "monto_fijo":
            return min(_money(request.rule_value), sale_total)
        return Decimal("0.00")

    @staticmethod
    def _final_status(charged: Decimal, sale_total: Decimal) -> SettlementStatus:
        if charged <= 0:
            return SettlementStatus.FORGIVEN
        if charged < sale_total:
            return SettlementStatus.PARTIAL
        return SettlementStatus.CHARGED

    def settle_consumptions_manually(self, tenant_id: UUID, request: ManualSettlementRequest,
                                     admin_id: Optional[UUID] = None,
                                     context: Optional[RequestContext] = None) -> ManualSettlementResult:
        """
        Liquidar consumos pendientes con una regla explícita.

        Los consumos que no están `pendiente` se omiten. Por cada monto cobrado
        se registra una transacción `consumo_staff` en la caja activa del PDV;
        si la caja está cerrada queda fuera de caja pendiente.
        """
        if request.rule in ("porcentaje", "monto_fijo") and request.rule_value is None:
            raise CajaDomainError(
                REGLA_LIQUIDACION_INVALIDA,
                f"La regla {request.rule} requiere un valor",
                status_code=status.HTTP_400_BAD_REQUEST
            )
        if request.rule == "porcentaje" and request.rule_value > Decimal("100"):
            raise CajaDomainError(
                REGLA_LIQUIDACION_INVALIDA,
                "El porcentaje debe estar entre 0 y 100",
                status_code=status.HTTP_400_BAD_REQUEST
            )

        payment_method = request.payment_method or "efectivo"
        repository = CashRegisterRepository(self.db)
        now = utc_now()

        settled: List[StaffConsumption] = []
        skipped_ids: List[UUID] = []
        total_charged = Decimal("0")
        in_register = Decimal("0")
        off_register = Decimal("0")
        transactions_created = 0

        try:
            consumptions = self.db.query(StaffConsumption).filter(
                StaffConsumption.tenant_id == tenant_id,
                StaffConsumption.id.in_(request.consumption_ids)
            ).with_for_update().all()
            found = {c.id for c in consumptions}
            skipped_ids.extend(cid for cid in request.consumption_ids if cid not in found)

            for consumption in consumptions:
                if consumption.settlement_status != SettlementStatus.PENDING.value:
                    skipped_ids.append(consumption.id)
                    continue

                charged = self._charged_amount(consumption, request)
                final_status = self._final_status(charged, _money(consumption.sale_total))

                self.db.add(ConsumptionSettlement(
                    tenant_id=tenant_id,
                    consumption_id=consumption.id,
                    admin_id=admin_id,
                    closing_id=None,
                    rule=request.rule,
                    rule_value=request.rule_value,
                    amount_charged=charged,
                    reason=request.reason,
                    created_at=now
                ))
                consumption.settlement_status = final_status.value
                consumption.settled_at = now
                settled.append(consumption)
                total_charged += charged

                if charged > 0:
                    register = repository.get_or_create_active(tenant_id, consumption.pdv_id)
                    is_off_register = not register.is_open
                    self.db.add(POSTransaction(
                        tenant_id=tenant_id,
                        pdv_id=consumption.pdv_id,
                        cash_register_id=register.id,
                        user_id=consumption.user_id,
                        transaction_type=TransactionType.STAFF_CONSUMPTION.value,
                        status=TransactionStatus.CONFIRMED.value,
                        subtotal=charged,
                        total=charged,
                        payment_method_name=payment_method,
                        notes=f"Liquidacion de consumo {consumption.id}",
                        off_register=is_off_register,
                        off_register_status=OffRegisterStatus.PENDING.value if is_off_register else None,
                        confirmed_at=now
                    ))
                    transactions_created += 1
                    if is_off_register:
                        off_register += charged
                    else:
                        in_register += charged

            self.db.commit()

        except HTTPException:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error en liquidación manual de consumos: {e}")
            raise internal_error()

        logger.info(
            f"Liquidación manual: regla {request.rule}, {len(settled)} consumos, "
            f"{len(skipped_ids)} omitidos, total {total_charged}"
        )

        for pdv_id in sorted({c.pdv_id for c in settled}, key=str):
            scoped = [c for c in settled if c.pdv_id == pdv_id]
            self.audit.log(
                "consumos_liquidados_manual",
                tenant_id=tenant_id,
                pdv_id=pdv_id,
                user_id=admin_id,
                entity_type="consumo",
                metadata={
                    "regla": request.rule,
                    "valorRegla": request.rule_value,
                    "motivo": request.reason,
                    "medioPago": payment_method,
                    "consumos": [c.id for c in scoped],
                },
                context=context
            )

        return ManualSettlementResult(
            settled=len(settled),
            skipped=len(skipped_ids),
            skipped_ids=skipped_ids,
            rule=request.rule,
            total_charged=total_charged,
            transactions_created=transactions_created,
            amount_in_register=in_register,
            amount_off_register=off_register
        )


# ===== Interfaz expuesta =====

def register_consumption(db: Session, tenant_id: UUID, data: ConsumptionCreate,
                         acting_user_id: Optional[UUID] = None, now: Optional[datetime] = None):
    return ConsumptionService(db).register_consumption(tenant_id, data, acting_user_id, now)


def settle_consumptions_manually(db: Session, tenant_id: UUID, request: ManualSettlementRequest,
                                 admin_id: Optional[UUID] = None) -> ManualSettlementResult:
    return ConsumptionService(db).settle_consumptions_manually(tenant_id, request, admin_id)
