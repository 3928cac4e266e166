"""
Cierre automático de caja por configuración operativa.

No es un proceso en background: se evalúa en línea en cada operación
(venta, consumo, estado de caja) y desde el barrido explícito por tenant
(endpoint admin o tarea Celery). La fila de control
(caja, fecha operativa, hora objetivo) es la única garantía contra la doble
ejecución: si el insert choca con la restricción única, otro evaluador ya
es dueño de ese cierre y acá no se hace nada.

Tradeoff aceptado: el control se inserta dentro de la misma transacción del
cierre, de modo que un cierre que falla no deja control y se reintenta en el
próximo chequeo. Si el control llegara a confirmarse sin cierre, ese
(caja, fecha, hora) no se vuelve a intentar.
"""
from datetime import datetime, time
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.common.exceptions import internal_error
from app.common.localtime import (
    ensure_utc, get_zone, local_datetime_utc, operating_date, parse_time_of_day, to_local
)
from app.common.mixins import utc_now
from app.modules.audit.service import AuditLogger, RequestContext
from app.modules.consumptions.settlement import count_pending_consumptions, settle_pending_consumptions
from app.modules.operating_config.schemas import OperatingConfig
from app.modules.operating_config.service import resolve_operating_config
from app.modules.pdv.models import PDV
from app.modules.pos.closing import (
    compute_period_totals, pending_off_register, write_closing,
    reconcile_off_register, mark_register_closed
)
from app.modules.pos.models import CashRegister, AutomaticClosingControl
from app.modules.pos.repository import CashRegisterRepository
from app.modules.pos.schemas import SweepResult

logger = logging.getLogger(__name__)

AUTOMATIC_CLOSING_NOTES = "Cierre automatico por configuracion operativa"


def _target_time(config: OperatingConfig) -> Optional[time]:
    if not config.caja.cierre_automatico_habilitado:
        return None
    return parse_time_of_day(config.caja.cierre_automatico_hora)


def is_automatic_close_due(register: CashRegister, config: OperatingConfig, now: Optional[datetime] = None) -> bool:
    """
    ¿Corresponde cerrar automáticamente la caja?

    Sí cuando la caja está abierta y su fecha operativa es anterior a hoy, o
    es hoy, ya se alcanzó la hora objetivo y la caja se abrió a esa hora o
    antes (una caja abierta después de la hora objetivo no se cierra ese día).
    """
    target = _target_time(config)
    if target is None or not register.is_open or register.opened_at is None:
        return False

    zone = get_zone(config.regional.timezone)
    local_now = to_local(now or utc_now(), zone)
    local_opened = to_local(register.opened_at, zone)

    if local_opened.date() < local_now.date():
        return True
    if local_opened.date() == local_now.date():
        return local_now.time() >= target and local_opened.time() <= target
    return False


class AutomaticClosingService:
    """Ejecución idempotente del cierre automático"""

    def __init__(self, db: Session):
        self.db = db

    def maybe_auto_close(self, register: CashRegister, config: OperatingConfig,
                         now: Optional[datetime] = None,
                         context: Optional[RequestContext] = None) -> bool:
        """
        Cierra la caja si corresponde. Devuelve True sólo si este llamado
        ejecutó el cierre.
        """
        now = ensure_utc(now) if now else utc_now()
        if not is_automatic_close_due(register, config, now):
            return False

        tenant_id, pdv_id = register.tenant_id, register.pdv_id
        rule = config.consumos.al_cierre_sin_liquidar

        if rule == "no_permitir_cierre":
            pending_count, _ = count_pending_consumptions(self.db, tenant_id, pdv_id)
            if pending_count > 0:
                logger.info(
                    f"Cierre automático omitido para caja {register.id}: "
                    f"{pending_count} consumos pendientes con regla no_permitir_cierre"
                )
                return False

        try:
            # Releer con lock: otro evaluador pudo haberla cerrado mientras tanto
            self.db.refresh(register, with_for_update=True)
            if not is_automatic_close_due(register, config, now):
                return False

            zone = get_zone(config.regional.timezone)
            target = _target_time(config)
            target_label = target.strftime("%H:%M")
            operating_day = operating_date(register.opened_at, zone)

            try:
                with self.db.begin_nested():
                    control = AutomaticClosingControl(
                        tenant_id=tenant_id,
                        pdv_id=pdv_id,
                        cash_register_id=register.id,
                        operating_date=operating_day,
                        target_time=target_label
                    )
                    self.db.add(control)
            except IntegrityError:
                logger.debug(
                    f"Cierre automático de caja {register.id} ({operating_day} {target_label}) "
                    f"ya tomado por otro evaluador"
                )
                return False

            opened_at = ensure_utc(register.opened_at)
            scheduled_at = local_datetime_utc(operating_day, target, zone)
            closed_at = max(scheduled_at, opened_at)

            totals = compute_period_totals(self.db, register)
            off_register = pending_off_register(self.db, tenant_id, pdv_id)
            # Sin conteo humano: monto real = esperado, diferencia 0
            expected = register.opening_float + totals.total_cash + off_register.total

            closing = write_closing(
                self.db, register,
                operating_day=operating_day,
                closed_at=closed_at,
                totals=totals,
                expected_amount=expected,
                counted_amount=expected,
                off_register=off_register,
                include_off_register=True,
                notes=AUTOMATIC_CLOSING_NOTES,
                closed_by=None,
                is_automatic=True
            )
            reconcile_off_register(self.db, register, closing, include_pending=True)

            settlement = settle_pending_consumptions(
                self.db, tenant_id, pdv_id, closing.id, rule
            )
            closing.consumption_rule = settlement.rule
            closing.consumptions_settled = settlement.count
            closing.consumptions_charged = settlement.total_charged

            control.closing_id = closing.id
            mark_register_closed(self.db, register)
            self.db.commit()

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error en cierre automático de caja {register.id}: {e}")
            raise internal_error()

        logger.info(
            f"Cierre automático ejecutado: caja {register.id}, PDV {pdv_id}, "
            f"fecha operativa {operating_day}, hora objetivo {target_label}"
        )

        audit = AuditLogger(self.db)
        audit.log(
            "caja_cierre_automatico",
            tenant_id=tenant_id,
            pdv_id=pdv_id,
            entity_type="caja",
            entity_id=register.id,
            metadata={
                "cierreId": closing.id,
                "horaObjetivo": target_label,
                "fechaOperativa": operating_day.isoformat(),
                "totalFueraCajaConciliado": off_register.total,
                "consumosResueltos": settlement.model_dump(),
            },
            context=context
        )
        if settlement.count > 0:
            audit.log(
                "consumos_resueltos_por_cierre",
                tenant_id=tenant_id,
                pdv_id=pdv_id,
                entity_type="cierre_caja",
                entity_id=closing.id,
                metadata={
                    "regla": settlement.rule,
                    "cantidad": settlement.count,
                    "montoTotal": settlement.total_charged,
                },
                context=context
            )
        return True

    def check_point_of_sale(self, tenant_id: UUID, pdv_id: UUID, now: Optional[datetime] = None,
                            context: Optional[RequestContext] = None) -> bool:
        """Chequeo en línea para un PDV (no crea la caja si no existe)."""
        register = CashRegisterRepository(self.db).get_active(tenant_id, pdv_id)
        if register is None or not register.is_open:
            return False
        config = resolve_operating_config(self.db, tenant_id, pdv_id)
        return self.maybe_auto_close(register, config, now, context)

    def run_sweep(self, tenant_id: UUID, now: Optional[datetime] = None,
                  context: Optional[RequestContext] = None) -> SweepResult:
        """Barrido sobre todos los PDV activos del tenant."""
        pdv_ids = [
            row.id for row in self.db.query(PDV.id).filter(
                PDV.tenant_id == tenant_id,
                PDV.is_active == True
            ).order_by(PDV.name.asc()).all()
        ]

        result = SweepResult()
        for pdv_id in pdv_ids:
            result.points_of_sale_evaluated += 1
            if self.check_point_of_sale(tenant_id, pdv_id, now, context):
                result.closures_executed += 1

        logger.info(
            f"Barrido de cierre automático tenant {tenant_id}: "
            f"{result.points_of_sale_evaluated} PDV evaluados, {result.closures_executed} cierres"
        )
        return result


def maybe_auto_close(db: Session, register: CashRegister, config: OperatingConfig,
                     now: Optional[datetime] = None) -> bool:
    return AutomaticClosingService(db).maybe_auto_close(register, config, now)


def run_automatic_closing_sweep(db: Session, tenant_id: UUID, now: Optional[datetime] = None) -> SweepResult:
    return AutomaticClosingService(db).run_sweep(tenant_id, now)
