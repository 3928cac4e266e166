"""
Servicios de negocio para el módulo POS (Point of Sale)

Implementa la operativa de caja:
- CashRegisterLifecycleService: Admisión de operaciones según el estado de la caja
  (abrir / fuera de caja / bloquear / pedir decisión), apertura y ajuste de monto inicial
- CashClosingService: Cierre manual con arqueo, liquidación de consumos y conciliación
  de ventas fuera de caja
- POSSaleService: Confirmación de ventas (admite la operación antes de registrarla)
- OffRegisterService: Listado y decisiones sobre ventas fuera de caja

Integración con otros módulos:
- Operating config: reglas de apertura, cierre automático y consumos
- Consumptions: política de liquidación al cierre
- Audit: eventos de apertura, cierre y decisiones
- Auth: rol del usuario para la apertura restringida
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID
import logging

from fastapi import HTTPException, status
from sqlalchemy import desc, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.common.exceptions import (
    CajaDomainError, internal_error,
    FUERA_CAJA_DESHABILITADO, CAJA_CERRADA_BLOQUEADA, CAJA_REQUIERE_MONTO_INICIAL_PRIMERA_VENTA,
    CAJA_CERRADA_REQUIERE_DECISION, CAJA_CERRADA_REQUIERE_APERTURA, CAJA_NO_ABIERTA,
    CIERRE_CONSUMOS_PENDIENTES_BLOQUEADO, CIERRE_REQUIERE_DECISION_FUERA_CAJA,
    CIERRE_REQUIERE_CONFIRMACION_CONSUMOS, CAJA_NO_ENCONTRADA, CAJA_YA_ABIERTA
)
from app.common.localtime import ensure_utc, get_zone, operating_date, parse_time_of_day, to_local
from app.common.mixins import utc_now
from app.modules.audit.service import AuditLogger, RequestContext
from app.modules.auth.service import get_user_role
from app.modules.consumptions.settlement import count_pending_consumptions, settle_pending_consumptions
from app.modules.operating_config.schemas import OperatingConfig
from app.modules.operating_config.service import resolve_operating_config
from app.modules.pos.closing import (
    compute_period_totals, pending_off_register, write_closing, reconcile_off_register,
    mark_register_open, mark_register_closed
)
from app.modules.pos.models import (
    CashRegister, CashClosing, POSTransaction, TransactionStatus, TransactionType, OffRegisterStatus
)
from app.modules.pos.repository import CashRegisterRepository
from app.modules.pos.scheduler import AutomaticClosingService
from app.modules.pos.schemas import (
    AdmissionInputs, AdmissionResult, OperationType, ClosedRegisterAction,
    CashRegisterClose, ManualCloseResult, SaleConfirm, OffRegisterDecision,
    OffRegisterDecisionResult, OffRegisterAction, OffRegisterSummary
)

logger = logging.getLogger(__name__)

MSG_ROLE_CANNOT_OPEN = (
    "No posees rol para abrir caja. Contacta a un encargado para abrirla "
    "o continua registrando fuera de caja."
)
MSG_ASK_DECISION = "La caja esta cerrada. Deseas abrirla o continuar fuera de caja?"
MSG_FIRST_SALE = "La caja esta cerrada. Ingresa el monto inicial para abrirla con esta primera venta."
MSG_BLOCKED = "Caja cerrada. Debe abrirse antes de operar."
MSG_OFF_REGISTER_DISABLED = "Las ventas fuera de caja estan deshabilitadas para este punto de venta."


class CashRegisterLifecycleService:
    """Máquina de estados de la caja por (tenant, PDV)"""

    def __init__(self, db: Session):
        self.db = db
        self.repository = CashRegisterRepository(db)
        self.scheduler = AutomaticClosingService(db)
        self.audit = AuditLogger(db)

    # ----- helpers -----

    def _can_open(self, tenant_id: UUID, user_id: Optional[UUID], config: OperatingConfig) -> bool:
        allowed = config.caja.apertura_roles_permitidos
        if not allowed:
            return True
        if user_id is None:
            return False
        role = get_user_role(self.db, user_id, tenant_id)
        return role is not None and role.role_id in allowed

    def _result(self, register: CashRegister, **kwargs) -> AdmissionResult:
        return AdmissionResult(
            tenant_id=register.tenant_id,
            register_id=register.id,
            register_open=bool(register.is_open),
            **kwargs
        )

    def _open(self, register: CashRegister, opening_float: Optional[Decimal], user_id: Optional[UUID],
              action: str, reason: str, context: Optional[RequestContext],
              now: Optional[datetime] = None) -> None:
        """Apertura atómica: lock de fila + UPDATE condicional, commit y auditoría."""
        amount = opening_float if opening_float is not None else Decimal("0")
        try:
            self.db.refresh(register, with_for_update=True)
            mark_register_open(self.db, register, amount, user_id, opened_at=now)
            self.db.commit()
            self.db.refresh(register)
        except CajaDomainError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error abriendo caja {register.id}: {e}")
            raise internal_error()

        logger.info(f"Caja {register.id} abierta ({action}) con monto inicial {amount}")
        self.audit.log(
            action,
            tenant_id=register.tenant_id,
            pdv_id=register.pdv_id,
            user_id=user_id,
            entity_type="caja",
            entity_id=register.id,
            metadata={"montoInicial": amount, "motivo": reason},
            context=context
        )

    def _open_and_admit(self, register, opening_float, user_id, action, reason, context,
                        now=None) -> AdmissionResult:
        try:
            self._open(register, opening_float, user_id, action, reason, context, now)
        except CajaDomainError as e:
            # Otra operación la abrió en paralelo
            if e.code != CAJA_YA_ABIERTA:
                raise
            self.db.refresh(register)
            return self._result(register)
        return self._result(register, register_opened_now=True)

    def _off_register(self, register: CashRegister, config: OperatingConfig) -> AdmissionResult:
        return self._result(register, off_register=True, allow_off_register=True)

    def _decision(self, register: CashRegister, config: OperatingConfig, can_open: bool,
                  suggested: Optional[ClosedRegisterAction], message: str,
                  code: str = CAJA_CERRADA_REQUIERE_DECISION, first_sale: bool = False) -> AdmissionResult:
        return self._result(
            register,
            decision_required=True,
            requires_opening_float_first_sale=first_sale,
            can_open_register=can_open,
            allow_off_register=config.caja.permitir_ventas_fuera_caja,
            suggested_action=suggested,
            message=message,
            code=code
        )

    def _no_action(self, register: CashRegister, config: OperatingConfig, can_open: bool) -> AdmissionResult:
        """Caja cerrada sin decisión del llamador: aplica `accion_caja_cerrada`."""
        caja = config.caja

        if caja.accion_caja_cerrada == "bloquear":
            raise CajaDomainError(CAJA_CERRADA_BLOQUEADA, MSG_BLOCKED)

        if caja.accion_caja_cerrada == "fuera_caja":
            if caja.permitir_ventas_fuera_caja:
                return self._off_register(register, config)
            if can_open:
                return self._decision(register, config, True, ClosedRegisterAction.OPEN, MSG_ASK_DECISION)
            raise CajaDomainError(CAJA_CERRADA_BLOQUEADA, MSG_BLOCKED)

        # preguntar
        if can_open:
            return self._decision(register, config, True, ClosedRegisterAction.OPEN, MSG_ASK_DECISION)
        if caja.permitir_ventas_fuera_caja:
            return self._decision(register, config, False, ClosedRegisterAction.OFF_REGISTER, MSG_ROLE_CANNOT_OPEN)
        raise CajaDomainError(CAJA_CERRADA_BLOQUEADA, MSG_BLOCKED)

    def _manual(self, register: CashRegister, config: OperatingConfig, decision: AdmissionInputs,
                reason: str, context: Optional[RequestContext],
                now: Optional[datetime] = None) -> AdmissionResult:
        can_open = self._can_open(register.tenant_id, decision.user_id, config)
        action = decision.closed_register_action

        if action == ClosedRegisterAction.OPEN:
            if not can_open:
                suggested = (
                    ClosedRegisterAction.OFF_REGISTER if config.caja.permitir_ventas_fuera_caja
                    else ClosedRegisterAction.OPEN
                )
                return self._decision(register, config, False, suggested, MSG_ROLE_CANNOT_OPEN)
            return self._open_and_admit(
                register, decision.opening_float, decision.user_id, "caja_apertura", reason, context, now
            )

        if action == ClosedRegisterAction.OFF_REGISTER:
            if not config.caja.permitir_ventas_fuera_caja:
                raise CajaDomainError(FUERA_CAJA_DESHABILITADO, MSG_OFF_REGISTER_DISABLED)
            return self._off_register(register, config)

        return self._no_action(register, config, can_open)

    # ----- operaciones -----

    def admit_operation(self, tenant_id: UUID, pdv_id: UUID, operation_type: OperationType,
                        decision: Optional[AdmissionInputs] = None, now: Optional[datetime] = None,
                        context: Optional[RequestContext] = None) -> AdmissionResult:
        """
        Decidir si una venta / consumo puede registrarse en el PDV.

        Orden fijo:
        1. cierre automático si corresponde (y relectura de la caja)
        2. caja abierta: se admite
        3. hora_programada: abre si ya pasó `apertura_hora`
        4. primera_venta: pide monto inicial en ventas; abre en silencio para el resto
        5. manual: abrir / fuera de caja / según `accion_caja_cerrada`
        """
        decision = decision or AdmissionInputs()
        now = ensure_utc(now) if now else utc_now()
        reason = f"admision_{operation_type.value if isinstance(operation_type, OperationType) else operation_type}"

        config = resolve_operating_config(self.db, tenant_id, pdv_id)
        register = self.repository.get_or_create_active(tenant_id, pdv_id)

        if not self.scheduler.maybe_auto_close(register, config, now, context):
            self.db.commit()
        self.db.refresh(register)

        if register.is_open:
            return self._result(register)

        caja = config.caja

        if caja.apertura_modo == "hora_programada":
            opening_time = parse_time_of_day(caja.apertura_hora)
            local_now = to_local(now, get_zone(config.regional.timezone))
            if opening_time is not None and local_now.time() >= opening_time:
                return self._open_and_admit(
                    register, decision.opening_float, decision.user_id,
                    "caja_apertura_automatica", reason, context, now
                )
            if decision.closed_register_action is None:
                can_open = self._can_open(tenant_id, decision.user_id, config)
                return self._no_action(register, config, can_open)
            return self._manual(register, config, decision, reason, context, now)

        if caja.apertura_modo == "primera_venta":
            if operation_type == OperationType.SALE:
                if decision.closed_register_action != ClosedRegisterAction.OPEN:
                    return self._decision(
                        register, config, True, ClosedRegisterAction.OPEN, MSG_FIRST_SALE,
                        code=CAJA_REQUIERE_MONTO_INICIAL_PRIMERA_VENTA, first_sale=True
                    )
                return self._open_and_admit(
                    register, decision.opening_float, decision.user_id, "caja_apertura", reason, context, now
                )
            return self._open_and_admit(
                register, Decimal("0"), decision.user_id, "caja_apertura_automatica", reason, context, now
            )

        return self._manual(register, config, decision, reason, context, now)

    def open_register(self, tenant_id: UUID, register_id: UUID, opening_float: Decimal,
                      user_id: Optional[UUID] = None, context: Optional[RequestContext] = None) -> CashRegister:
        """Apertura explícita de un admin (409 CAJA_YA_ABIERTA si ya estaba abierta)."""
        register = self.repository.get_by_id(tenant_id, register_id)
        self._open(register, opening_float, user_id, "caja_apertura", "apertura_manual", context)
        return register

    def adjust_opening_float(self, tenant_id: UUID, register_id: UUID, new_opening_float: Decimal,
                             reason: Optional[str] = None, user_id: Optional[UUID] = None,
                             context: Optional[RequestContext] = None) -> CashRegister:
        """Ajustar el monto inicial de una caja abierta"""
        try:
            register = self.repository.get_by_id(tenant_id, register_id, for_update=True)
            if not register.is_open:
                raise CajaDomainError(
                    CAJA_NO_ABIERTA,
                    "Solo se puede ajustar una caja abierta",
                    status_code=status.HTTP_400_BAD_REQUEST
                )

            previous = register.opening_float
            register.opening_float = new_opening_float
            self.db.commit()
            self.db.refresh(register)

        except HTTPException:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error ajustando monto inicial de caja {register_id}: {e}")
            raise internal_error()

        self.audit.log(
            "caja_ajuste_monto_inicial",
            tenant_id=tenant_id,
            pdv_id=register.pdv_id,
            user_id=user_id,
            entity_type="caja",
            entity_id=register.id,
            metadata={"montoAnterior": previous, "montoNuevo": new_opening_float, "motivo": reason},
            context=context
        )
        return register

    def get_register_status(self, tenant_id: UUID, pdv_id: UUID, now: Optional[datetime] = None,
                            context: Optional[RequestContext] = None) -> CashRegister:
        """Estado de la caja del PDV; antes intenta el cierre automático."""
        register = self.repository.get_or_create_active(tenant_id, pdv_id)
        config = resolve_operating_config(self.db, tenant_id, pdv_id)
        if self.scheduler.maybe_auto_close(register, config, now, context):
            self.db.refresh(register)
        else:
            self.db.commit()
        return register


class CashClosingService:
    """Cierre manual de caja y consulta de cierres"""

    def __init__(self, db: Session):
        self.db = db
        self.repository = CashRegisterRepository(db)
        self.audit = AuditLogger(db)

    def close_register_manually(self, tenant_id: UUID, register_id: UUID, close_data: CashRegisterClose,
                                acting_user_id: Optional[UUID] = None,
                                context: Optional[RequestContext] = None) -> ManualCloseResult:
        """
        Cerrar caja con arqueo.

        Todo ocurre en una transacción: si alguna validación falla la caja
        queda exactamente como estaba.
        """
        try:
            register = self.repository.get_by_id(tenant_id, register_id, for_update=True)
            if not register.is_open or register.opened_at is None:
                raise CajaDomainError(
                    CAJA_NO_ABIERTA,
                    "La caja no está abierta",
                    status_code=status.HTTP_400_BAD_REQUEST
                )

            pdv_id = register.pdv_id
            config = resolve_operating_config(self.db, tenant_id, pdv_id)
            zone = get_zone(config.regional.timezone)

            # Ventas fuera de caja pendientes
            off_register = pending_off_register(self.db, tenant_id, pdv_id)
            include_off_register = close_data.include_off_register
            if include_off_register is None:
                policy = config.caja.manejo_fuera_caja_al_cerrar
                if policy == "incluir":
                    include_off_register = True
                elif policy == "excluir" or off_register.count == 0:
                    include_off_register = False
                else:
                    raise CajaDomainError(
                        CIERRE_REQUIERE_DECISION_FUERA_CAJA,
                        "Hay ventas fuera de caja pendientes. Indica si deseas incluirlas en este cierre.",
                        extra={"cantidadPendiente": off_register.count, "totalPendiente": float(off_register.total)}
                    )

            # Consumos pendientes
            rule = config.consumos.al_cierre_sin_liquidar
            pending_count, pending_total = count_pending_consumptions(self.db, tenant_id, pdv_id)
            if pending_count > 0:
                extra = {"cantidadPendiente": pending_count, "totalPendiente": float(pending_total)}
                if rule == "no_permitir_cierre":
                    raise CajaDomainError(
                        CIERRE_CONSUMOS_PENDIENTES_BLOQUEADO,
                        "No se puede cerrar la caja con consumos pendientes del staff. Debes resolverlos primero.",
                        extra=extra
                    )
                if not close_data.confirm_pending_consumptions:
                    raise CajaDomainError(
                        CIERRE_REQUIERE_CONFIRMACION_CONSUMOS,
                        "Hay consumos pendientes. Al cerrar se aplicara la accion configurada automaticamente.",
                        extra={**extra, "accionConfigurada": rule}
                    )

            totals = compute_period_totals(self.db, register)
            included_total = off_register.total if include_off_register else Decimal("0")
            expected = register.opening_float + totals.total_cash + included_total
            operating_day = operating_date(register.opened_at, zone)

            closing = write_closing(
                self.db, register,
                operating_day=operating_day,
                closed_at=utc_now(),
                totals=totals,
                expected_amount=expected,
                counted_amount=close_data.counted_amount,
                off_register=off_register,
                include_off_register=include_off_register,
                notes=close_data.notes,
                closed_by=acting_user_id,
                is_automatic=False
            )
            reconcile_off_register(self.db, register, closing, include_pending=include_off_register)

            settlement = settle_pending_consumptions(
                self.db, tenant_id, pdv_id, closing.id, rule,
                acting_user_id=acting_user_id,
                reason="Aplicacion de regla al cierre manual de caja"
            )
            closing.consumption_rule = settlement.rule
            closing.consumptions_settled = settlement.count
            closing.consumptions_charged = settlement.total_charged

            mark_register_closed(self.db, register)
            self.db.commit()
            self.db.refresh(closing)

        except HTTPException:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error cerrando caja {register_id}: {e}")
            raise internal_error()

        logger.info(
            f"Caja {register_id} cerrada manualmente: esperado {closing.expected_amount}, "
            f"real {closing.counted_amount}, diferencia {closing.variance}"
        )
        self.audit.log(
            "caja_cierre",
            tenant_id=tenant_id,
            pdv_id=pdv_id,
            user_id=acting_user_id,
            entity_type="caja",
            entity_id=register_id,
            metadata={
                "cierreId": closing.id,
                "montoReal": closing.counted_amount,
                "montoEsperado": closing.expected_amount,
                "diferencia": closing.variance,
                "incluirFueraCaja": include_off_register,
                "fueraCajaConciliadas": closing.off_register_included,
                "consumosAplicados": settlement.model_dump(),
            },
            context=context
        )
        if settlement.count > 0:
            self.audit.log(
                "consumos_resueltos_por_cierre",
                tenant_id=tenant_id,
                pdv_id=pdv_id,
                user_id=acting_user_id,
                entity_type="cierre_caja",
                entity_id=closing.id,
                metadata={
                    "regla": settlement.rule,
                    "cantidad": settlement.count,
                    "montoTotal": settlement.total_charged,
                },
                context=context
            )

        return ManualCloseResult(
            closing_id=closing.id,
            register_id=register_id,
            operating_date=closing.operating_date,
            opening_float=closing.opening_float,
            expected_amount=closing.expected_amount,
            counted_amount=closing.counted_amount,
            variance=closing.variance,
            totals=totals,
            include_off_register=include_off_register,
            off_register_included=closing.off_register_included,
            off_register_total=closing.off_register_total,
            settlement=settlement
        )

    def get_closings(self, tenant_id: UUID, pdv_id: Optional[UUID] = None,
                     limit: int = 100, offset: int = 0):
        """Obtener lista de cierres"""
        query = self.db.query(CashClosing).filter(CashClosing.tenant_id == tenant_id)
        if pdv_id:
            query = query.filter(CashClosing.pdv_id == pdv_id)

        total = query.count()
        closings = query.order_by(desc(CashClosing.closed_at)).offset(offset).limit(limit).all()
        return {"closings": closings, "total": total, "limit": limit, "offset": offset}

    def get_closing(self, tenant_id: UUID, closing_id: UUID) -> CashClosing:
        closing = self.db.query(CashClosing).filter(
            CashClosing.id == closing_id,
            CashClosing.tenant_id == tenant_id
        ).first()
        if not closing:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cierre no encontrado"
            )
        return closing


class POSSaleService:
    """Confirmación de ventas POS"""

    def __init__(self, db: Session):
        self.db = db
        self.lifecycle = CashRegisterLifecycleService(db)

    def confirm_sale(self, tenant_id: UUID, sale_data: SaleConfirm, user_id: Optional[UUID] = None,
                     now: Optional[datetime] = None,
                     context: Optional[RequestContext] = None) -> Tuple[AdmissionResult, Optional[POSTransaction]]:
        """
        Admitir la venta y registrarla.

        Si la admisión requiere una decisión se devuelve sin transacción; si la
        caja quedó cerrada la venta se registra fuera de caja.
        """
        admission = self.lifecycle.admit_operation(
            tenant_id, sale_data.pdv_id, OperationType.SALE,
            AdmissionInputs(
                closed_register_action=sale_data.closed_register_action,
                opening_float=sale_data.opening_float,
                user_id=user_id
            ),
            now=now,
            context=context
        )
        if admission.decision_required:
            return admission, None

        try:
            transaction = POSTransaction(
                tenant_id=tenant_id,
                pdv_id=sale_data.pdv_id,
                cash_register_id=admission.register_id,
                user_id=user_id,
                transaction_type=TransactionType.SALE.value,
                status=TransactionStatus.CONFIRMED.value,
                subtotal=sale_data.subtotal if sale_data.subtotal is not None else sale_data.total,
                total=sale_data.total,
                payment_method_name=sale_data.payment_method_name,
                notes=sale_data.notes,
                off_register=admission.off_register,
                off_register_status=OffRegisterStatus.PENDING.value if admission.off_register else None,
                confirmed_at=utc_now()
            )
            self.db.add(transaction)
            self.db.commit()
            self.db.refresh(transaction)

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error confirmando venta en PDV {sale_data.pdv_id}: {e}")
            raise internal_error()

        logger.info(
            f"Venta {transaction.id} confirmada en PDV {sale_data.pdv_id}"
            f"{' (fuera de caja)' if transaction.off_register else ''}"
        )
        return admission, transaction


class OffRegisterService:
    """Ventas registradas con la caja cerrada"""

    def __init__(self, db: Session):
        self.db = db
        self.repository = CashRegisterRepository(db)
        self.lifecycle = CashRegisterLifecycleService(db)
        self.audit = AuditLogger(db)

    def list_off_register_sales(self, tenant_id: UUID, pdv_id: UUID, status_filter: Optional[str] = None,
                                limit: int = 100, offset: int = 0):
        """Ventas fuera de caja del PDV con resumen de pendientes"""
        query = self.db.query(POSTransaction).filter(
            POSTransaction.tenant_id == tenant_id,
            POSTransaction.pdv_id == pdv_id,
            POSTransaction.status == TransactionStatus.CONFIRMED.value,
            POSTransaction.off_register == True
        )
        if status_filter == OffRegisterStatus.PENDING.value:
            query = query.filter(
                (POSTransaction.off_register_status == OffRegisterStatus.PENDING.value)
                | (POSTransaction.off_register_status.is_(None) & POSTransaction.reconciled_at.is_(None))
            )
        elif status_filter:
            query = query.filter(POSTransaction.off_register_status == status_filter)

        transactions = query.order_by(desc(POSTransaction.confirmed_at)).offset(offset).limit(limit).all()

        pending = pending_off_register(self.db, tenant_id, pdv_id)
        oldest = self.db.query(func.min(POSTransaction.confirmed_at)).filter(
            POSTransaction.tenant_id == tenant_id,
            POSTransaction.pdv_id == pdv_id,
            POSTransaction.status == TransactionStatus.CONFIRMED.value,
            POSTransaction.off_register == True,
            POSTransaction.off_register_status == OffRegisterStatus.PENDING.value
        ).scalar()
        oldest_minutes = int((utc_now() - ensure_utc(oldest)).total_seconds() // 60) if oldest else 0

        return {
            "transactions": transactions,
            "summary": OffRegisterSummary(
                pending_count=pending.count,
                pending_total=pending.total,
                oldest_pending_minutes=oldest_minutes
            ),
            "limit": limit,
            "offset": offset
        }

    def decide(self, tenant_id: UUID, decision: OffRegisterDecision, user_id: Optional[UUID] = None,
               context: Optional[RequestContext] = None) -> OffRegisterDecisionResult:
        """
        Decisión masiva sobre ventas fuera de caja pendientes:
        - imputar_a_caja_actual: pasan a la caja activa (abre la caja si se pide)
        - marcar_solo_balance: cuentan sólo para el balance, nunca para un arqueo
        - dejar_pendiente: se mantienen pendientes
        """
        transactions = self.db.query(POSTransaction).filter(
            POSTransaction.tenant_id == tenant_id,
            POSTransaction.pdv_id == decision.pdv_id,
            POSTransaction.status == TransactionStatus.CONFIRMED.value,
            POSTransaction.off_register == True,
            POSTransaction.id.in_(decision.transaction_ids)
        ).all()

        if not transactions:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No se encontraron ventas fuera de caja para procesar"
            )

        pending = [
            t for t in transactions
            if t.off_register_status == OffRegisterStatus.PENDING.value
            or (t.off_register_status is None and t.reconciled_at is None)
        ]
        register = self.repository.get_active(tenant_id, decision.pdv_id)
        if not pending:
            return OffRegisterDecisionResult(
                action=decision.action,
                processed=0,
                total_amount=Decimal("0"),
                register_open=bool(register and register.is_open)
            )

        if decision.action == OffRegisterAction.ASSIGN_TO_CURRENT:
            if register is None:
                raise CajaDomainError(
                    CAJA_NO_ENCONTRADA,
                    "No hay caja activa para este punto de venta",
                    status_code=status.HTTP_404_NOT_FOUND
                )
            if not register.is_open:
                if not decision.open_register_if_needed:
                    raise CajaDomainError(
                        CAJA_CERRADA_REQUIERE_APERTURA,
                        "La caja está cerrada. Puedes abrirla para imputar estas ventas."
                    )
                self.lifecycle.open_register(
                    tenant_id, register.id, decision.opening_float or Decimal("0"), user_id, context
                )

        now = utc_now()
        try:
            for transaction in pending:
                if decision.action == OffRegisterAction.ASSIGN_TO_CURRENT:
                    transaction.off_register_status = OffRegisterStatus.ASSIGNED.value
                    transaction.reconciled_at = now
                    transaction.cash_register_id = register.id
                    if decision.payment_method_name:
                        transaction.payment_method_name = decision.payment_method_name
                elif decision.action == OffRegisterAction.BALANCE_ONLY:
                    transaction.off_register_status = OffRegisterStatus.BALANCE_ONLY.value
                    transaction.reconciled_at = now
                else:
                    transaction.off_register_status = OffRegisterStatus.PENDING.value
                    transaction.reconciled_at = None
                    transaction.reconciled_closing_id = None
            self.db.commit()

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error aplicando decisión fuera de caja: {e}")
            raise internal_error()

        total_amount = sum((Decimal(t.total) for t in pending), Decimal("0"))
        self.audit.log(
            "fuera_caja_decision_masiva",
            tenant_id=tenant_id,
            pdv_id=decision.pdv_id,
            user_id=user_id,
            entity_type="transaccion",
            metadata={
                "accion": decision.action.value,
                "medioPago": decision.payment_method_name,
                "procesadas": len(pending),
                "montoTotal": total_amount,
                "motivo": decision.reason,
                "abrirCajaSiHaceFalta": decision.open_register_if_needed,
            },
            context=context
        )

        return OffRegisterDecisionResult(
            action=decision.action,
            processed=len(pending),
            total_amount=total_amount,
            register_open=bool(register is not None and register.is_open)
        )


# ===== Interfaz expuesta =====

def admit_operation(db: Session, tenant_id: UUID, pdv_id: UUID, operation_type: OperationType,
                    decision: Optional[AdmissionInputs] = None, now: Optional[datetime] = None) -> AdmissionResult:
    return CashRegisterLifecycleService(db).admit_operation(tenant_id, pdv_id, operation_type, decision, now)


def close_register_manually(db: Session, tenant_id: UUID, register_id: UUID, counted_amount: Decimal,
                            notes: Optional[str] = None, acting_user_id: Optional[UUID] = None,
                            include_off_register: Optional[bool] = None,
                            confirm_pending_consumptions: bool = False) -> ManualCloseResult:
    return CashClosingService(db).close_register_manually(
        tenant_id, register_id,
        CashRegisterClose(
            counted_amount=counted_amount,
            notes=notes,
            include_off_register=include_off_register,
            confirm_pending_consumptions=confirm_pending_consumptions
        ),
        acting_user_id
    )
