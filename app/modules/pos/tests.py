"""
Tests para el módulo POS

Cubren:
- Admisión de operaciones con la caja cerrada (abrir / fuera de caja / bloquear / decisión)
- Apertura, ajuste y cierre manual con arqueo
- Política de consumos pendientes y ventas fuera de caja al cerrar
- Cierre automático: vencimiento, idempotencia del barrido y control único
- Endpoints REST (409 de decisión, estado de caja, barrido)
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from app.common.exceptions import CajaDomainError
from app.common.localtime import ensure_utc
from app.modules.audit.models import AuditEvent
from app.modules.consumptions.models import ConsumptionSettlement, SettlementStatus
from app.modules.operating_config.schemas import OperatingConfig
from app.modules.pos.closing import compute_period_totals
from app.modules.pos.models import (
    CashRegister, CashClosing, POSTransaction, AutomaticClosingControl, OffRegisterStatus,
    TransactionStatus
)
from app.modules.pos.repository import CashRegisterRepository, get_or_create_active_register
from app.modules.pos.scheduler import (
    AutomaticClosingService, is_automatic_close_due, maybe_auto_close, run_automatic_closing_sweep
)
from app.modules.pos.schemas import (
    AdmissionInputs, ClosedRegisterAction, OperationType, SaleConfirm, OffRegisterDecision, OffRegisterAction
)
from app.modules.pos.services import (
    CashRegisterLifecycleService, OffRegisterService, POSSaleService, admit_operation, close_register_manually
)

ZONE = ZoneInfo("America/Argentina/Buenos_Aires")


def local(year, month, day, hour, minute=0):
    """Hora local del PDV expresada como datetime UTC (así se persiste)."""
    return datetime(year, month, day, hour, minute, tzinfo=ZONE).astimezone(timezone.utc)


def caja_config(**caja):
    return {"regional": {"timezone": "America/Argentina/Buenos_Aires"}, "caja": caja}


def auto_close_config(hour="22:00", **consumos):
    config = caja_config(cierre_automatico_habilitado=True, cierre_automatico_hora=hour)
    if consumos:
        config["consumos"] = consumos
    return config


# ===== REPOSITORIO =====

class TestRegisterRepository:

    def test_creates_virtual_register_once(self, db_session, sample_pdv):
        first = get_or_create_active_register(db_session, sample_pdv.tenant_id, sample_pdv.id)
        db_session.commit()
        second = get_or_create_active_register(db_session, sample_pdv.tenant_id, sample_pdv.id)

        assert first.id == second.id
        assert first.is_virtual is True
        assert first.is_open is False
        assert db_session.query(CashRegister).filter(CashRegister.pdv_id == sample_pdv.id).count() == 1

    def test_unknown_pdv(self, db_session, sample_company):
        from uuid import uuid4
        with pytest.raises(CajaDomainError) as exc:
            get_or_create_active_register(db_session, sample_company.id, uuid4())
        assert exc.value.code == "PUNTO_VENTA_NO_ENCONTRADO"

    def test_second_active_register_violates_unique_index(self, db_session, sample_pdv, make_register):
        from sqlalchemy.exc import IntegrityError
        make_register(sample_pdv)
        db_session.add(CashRegister(
            tenant_id=sample_pdv.tenant_id, pdv_id=sample_pdv.id, name="Otra", is_active=True
        ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_concurrent_creation_reuses_winner(self, db_session, sample_pdv, make_register, monkeypatch):
        existing = make_register(sample_pdv)
        repository = CashRegisterRepository(db_session)
        lookup = repository.get_active
        calls = []

        def misses_first(tenant_id, pdv_id, for_update=False):
            calls.append(pdv_id)
            # la primera lectura no ve la caja que otra operación acaba de crear
            if len(calls) == 1:
                return None
            return lookup(tenant_id, pdv_id, for_update)

        monkeypatch.setattr(repository, "get_active", misses_first)

        register = repository.get_or_create_active(sample_pdv.tenant_id, sample_pdv.id)
        db_session.commit()

        assert len(calls) == 2
        assert register.id == existing.id
        assert db_session.query(CashRegister).filter(CashRegister.pdv_id == sample_pdv.id).count() == 1


# ===== ADMISIÓN =====

class TestAdmission:

    def test_manual_open_with_opening_float(self, db_session, sample_pdv, sample_user, set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(
            apertura_modo="manual", accion_caja_cerrada="preguntar", permitir_ventas_fuera_caja=True
        ))

        admission, transaction = POSSaleService(db_session).confirm_sale(
            sample_pdv.tenant_id,
            SaleConfirm(
                pdv_id=sample_pdv.id, total=Decimal("3500"), payment_method_name="efectivo",
                closed_register_action="abrir", opening_float=Decimal("12000")
            ),
            user_id=sample_user.id
        )

        register = CashRegisterRepository(db_session).get_active(sample_pdv.tenant_id, sample_pdv.id)
        assert admission.register_opened_now is True
        assert register.is_open is True
        assert register.opening_float == Decimal("12000")
        assert transaction is not None
        assert transaction.off_register is False
        assert transaction.cash_register_id == register.id
        assert db_session.query(AuditEvent).filter(AuditEvent.action == "caja_apertura").count() == 1

    def test_off_register_disabled(self, db_session, sample_pdv, sample_user, set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(
            apertura_modo="manual", accion_caja_cerrada="preguntar", permitir_ventas_fuera_caja=False
        ))

        with pytest.raises(CajaDomainError) as exc:
            admit_operation(
                db_session, sample_pdv.tenant_id, sample_pdv.id, OperationType.SALE,
                AdmissionInputs(closed_register_action=ClosedRegisterAction.OFF_REGISTER, user_id=sample_user.id)
            )

        assert exc.value.code == "FUERA_CAJA_DESHABILITADO"
        assert exc.value.status_code == 409
        register = CashRegisterRepository(db_session).get_active(sample_pdv.tenant_id, sample_pdv.id)
        assert register.is_open is False

    def test_first_sale_requires_opening_float(self, db_session, sample_pdv, sample_user, set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(apertura_modo="primera_venta"))

        admission, transaction = POSSaleService(db_session).confirm_sale(
            sample_pdv.tenant_id,
            SaleConfirm(pdv_id=sample_pdv.id, total=Decimal("100"), payment_method_name="efectivo"),
            user_id=sample_user.id
        )

        assert transaction is None
        assert admission.decision_required is True
        assert admission.code == "CAJA_REQUIERE_MONTO_INICIAL_PRIMERA_VENTA"
        assert admission.requires_opening_float_first_sale is True
        assert admission.suggested_action == ClosedRegisterAction.OPEN
        assert db_session.query(POSTransaction).count() == 0
        register = db_session.get(CashRegister, admission.register_id)
        assert register.is_open is False
        assert db_session.query(CashClosing).count() == 0

    def test_first_consumption_opens_silently(self, db_session, sample_pdv, set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(apertura_modo="primera_venta"))

        admission = admit_operation(db_session, sample_pdv.tenant_id, sample_pdv.id, OperationType.CONSUMPTION)

        assert admission.admitted
        assert admission.register_open is True
        register = db_session.get(CashRegister, admission.register_id)
        assert register.opening_float == Decimal("0")
        assert db_session.query(AuditEvent).filter(AuditEvent.action == "caja_apertura_automatica").count() == 1

    def test_ask_suggests_open_for_allowed_role(self, db_session, sample_pdv, sample_user):
        admission = admit_operation(
            db_session, sample_pdv.tenant_id, sample_pdv.id, OperationType.SALE,
            AdmissionInputs(user_id=sample_user.id)
        )
        assert admission.decision_required is True
        assert admission.code == "CAJA_CERRADA_REQUIERE_DECISION"
        assert admission.can_open_register is True
        assert admission.allow_off_register is True
        assert admission.suggested_action == ClosedRegisterAction.OPEN

    def test_role_not_allowed_to_open(self, db_session, sample_pdv, make_user, set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(apertura_roles_permitidos=["owner", "admin"]))
        cashier = make_user("cashier")

        admission = admit_operation(
            db_session, sample_pdv.tenant_id, sample_pdv.id, OperationType.SALE,
            AdmissionInputs(closed_register_action=ClosedRegisterAction.OPEN, user_id=cashier.id)
        )

        assert admission.decision_required is True
        assert admission.can_open_register is False
        assert admission.suggested_action == ClosedRegisterAction.OFF_REGISTER
        assert db_session.get(CashRegister, admission.register_id).is_open is False

    def test_blocked_when_configured(self, db_session, sample_pdv, sample_user, set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(accion_caja_cerrada="bloquear"))

        with pytest.raises(CajaDomainError) as exc:
            admit_operation(
                db_session, sample_pdv.tenant_id, sample_pdv.id, OperationType.SALE,
                AdmissionInputs(user_id=sample_user.id)
            )
        assert exc.value.code == "CAJA_CERRADA_BLOQUEADA"

    def test_off_register_by_default_action(self, db_session, sample_pdv, sample_user, set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(accion_caja_cerrada="fuera_caja"))

        admission, transaction = POSSaleService(db_session).confirm_sale(
            sample_pdv.tenant_id,
            SaleConfirm(pdv_id=sample_pdv.id, total=Decimal("800"), payment_method_name="efectivo"),
            user_id=sample_user.id
        )

        assert admission.off_register is True
        assert transaction.off_register is True
        assert transaction.off_register_status == OffRegisterStatus.PENDING.value
        assert db_session.get(CashRegister, admission.register_id).is_open is False

    def test_scheduled_opening(self, db_session, sample_pdv, sample_user, set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(apertura_modo="hora_programada", apertura_hora="08:00"))

        early = admit_operation(
            db_session, sample_pdv.tenant_id, sample_pdv.id, OperationType.SALE,
            AdmissionInputs(user_id=sample_user.id), now=local(2026, 3, 10, 7, 30)
        )
        assert early.decision_required is True
        assert early.register_open is False

        on_time = admit_operation(
            db_session, sample_pdv.tenant_id, sample_pdv.id, OperationType.SALE,
            AdmissionInputs(user_id=sample_user.id), now=local(2026, 3, 10, 8, 5)
        )
        assert on_time.admitted
        assert on_time.register_opened_now is True
        opened = db_session.get(CashRegister, on_time.register_id)
        assert ensure_utc(opened.opened_at) == local(2026, 3, 10, 8, 5)
        assert db_session.query(AuditEvent).filter(AuditEvent.action == "caja_apertura_automatica").count() == 1

    def test_open_register_admits_directly(self, db_session, sample_pdv, make_register):
        register = make_register(sample_pdv, is_open=True, opening_float=Decimal("1000"))
        admission = admit_operation(db_session, sample_pdv.tenant_id, sample_pdv.id, OperationType.SALE)
        assert admission.admitted
        assert admission.register_id == register.id
        assert admission.register_opened_now is False

    def test_admission_runs_automatic_close_first(self, db_session, sample_pdv, sample_user, make_register,
                                                  set_operating_config):
        set_operating_config(sample_pdv.tenant_id, auto_close_config("22:00"))
        register = make_register(sample_pdv, is_open=True, opening_float=Decimal("500"),
                                 opened_at=local(2026, 3, 9, 9, 0))

        admission = admit_operation(
            db_session, sample_pdv.tenant_id, sample_pdv.id, OperationType.SALE,
            AdmissionInputs(user_id=sample_user.id), now=local(2026, 3, 10, 10, 0)
        )

        assert admission.decision_required is True
        assert admission.register_id == register.id
        closing = db_session.query(CashClosing).one()
        assert closing.is_automatic is True
        assert closing.operating_date == date(2026, 3, 9)

    def test_open_lost_to_concurrent_opening_is_admitted(self, db_session, sample_pdv, sample_user, make_register,
                                                         monkeypatch):
        from app.modules.pos import services as pos_services

        register = make_register(sample_pdv)
        open_register = pos_services.mark_register_open

        def opened_by_other_terminal(db, target, *args, **kwargs):
            db.query(CashRegister).filter(CashRegister.id == target.id).update({
                "is_open": True,
                "opening_float": Decimal("700"),
                "opened_at": local(2026, 3, 10, 9, 0),
            }, synchronize_session=False)
            db.commit()
            return open_register(db, target, *args, **kwargs)

        monkeypatch.setattr(pos_services, "mark_register_open", opened_by_other_terminal)

        admission, transaction = POSSaleService(db_session).confirm_sale(
            sample_pdv.tenant_id,
            SaleConfirm(
                pdv_id=sample_pdv.id, total=Decimal("1500"), payment_method_name="efectivo",
                closed_register_action="abrir", opening_float=Decimal("12000")
            ),
            user_id=sample_user.id
        )

        assert admission.admitted
        assert admission.register_open is True
        assert admission.register_opened_now is False
        assert transaction.off_register is False
        assert transaction.cash_register_id == register.id
        db_session.refresh(register)
        assert register.opening_float == Decimal("700")
        assert db_session.query(CashRegister).count() == 1
        assert db_session.query(AuditEvent).filter(AuditEvent.action == "caja_apertura").count() == 0


# ===== APERTURA / CIERRE MANUAL =====

class TestManualClose:

    def test_open_then_close_round_trip(self, db_session, sample_pdv, sample_user, make_register):
        register = make_register(sample_pdv)
        service = CashRegisterLifecycleService(db_session)
        service.open_register(sample_pdv.tenant_id, register.id, Decimal("5000"), sample_user.id)

        result = close_register_manually(
            db_session, sample_pdv.tenant_id, register.id, Decimal("5000"), acting_user_id=sample_user.id
        )

        assert result.expected_amount == Decimal("5000.00")
        assert result.variance == Decimal("0")
        db_session.refresh(register)
        assert register.is_open is False
        assert register.opening_float == Decimal("0")
        assert register.opened_at is None
        assert register.opened_by is None

    def test_open_twice_fails(self, db_session, sample_pdv, make_register):
        register = make_register(sample_pdv, is_open=True)
        with pytest.raises(CajaDomainError) as exc:
            CashRegisterLifecycleService(db_session).open_register(sample_pdv.tenant_id, register.id, Decimal("0"))
        assert exc.value.code == "CAJA_YA_ABIERTA"

    def test_close_not_open(self, db_session, sample_pdv, make_register):
        register = make_register(sample_pdv)
        with pytest.raises(CajaDomainError) as exc:
            close_register_manually(db_session, sample_pdv.tenant_id, register.id, Decimal("0"))
        assert exc.value.code == "CAJA_NO_ABIERTA"
        assert exc.value.status_code == 400

    def test_totals_by_payment_method(self, db_session, sample_pdv, make_register, make_transaction):
        register = make_register(sample_pdv, is_open=True, opening_float=Decimal("5000"))
        make_transaction(register, "1000", "Efectivo")
        make_transaction(register, "2000", "Tarjeta Débito")
        make_transaction(register, "500", "transferencia bancaria")
        make_transaction(register, "300", "Mercado Pago")
        make_transaction(register, "9999", "efectivo", status=TransactionStatus.VOIDED.value)
        make_transaction(register, "7777", "efectivo", confirmed_at=local(2020, 1, 1, 10, 0))

        totals = compute_period_totals(db_session, register)
        assert totals.total_sales == Decimal("3800.00")
        assert totals.total_cash == Decimal("1000.00")
        assert totals.total_card == Decimal("2000.00")
        assert totals.total_transfer == Decimal("500.00")
        assert totals.transaction_count == 4

        result = close_register_manually(db_session, sample_pdv.tenant_id, register.id, Decimal("5900"))
        assert result.expected_amount == Decimal("6000.00")
        assert result.variance == Decimal("-100.00")

    def test_operating_date_is_local_date_of_opening(self, db_session, sample_pdv, make_register,
                                                     set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config())
        # 22:30 local del 9 de marzo = 01:30 UTC del 10
        register = make_register(sample_pdv, is_open=True, opened_at=local(2026, 3, 9, 22, 30))

        result = close_register_manually(db_session, sample_pdv.tenant_id, register.id, Decimal("0"))
        assert result.operating_date == date(2026, 3, 9)

    def test_adjust_opening_float(self, db_session, sample_pdv, sample_user, make_register):
        register = make_register(sample_pdv, is_open=True, opening_float=Decimal("1000"))
        CashRegisterLifecycleService(db_session).adjust_opening_float(
            sample_pdv.tenant_id, register.id, Decimal("1500"), "Faltaba cambio", sample_user.id
        )
        db_session.refresh(register)
        assert register.opening_float == Decimal("1500")
        event = db_session.query(AuditEvent).filter(AuditEvent.action == "caja_ajuste_monto_inicial").one()
        assert event.event_metadata["montoNuevo"] == 1500

    def test_adjust_closed_register_fails(self, db_session, sample_pdv, make_register):
        register = make_register(sample_pdv)
        with pytest.raises(CajaDomainError) as exc:
            CashRegisterLifecycleService(db_session).adjust_opening_float(
                sample_pdv.tenant_id, register.id, Decimal("10")
            )
        assert exc.value.code == "CAJA_NO_ABIERTA"

    def test_pending_consumptions_block_close(self, db_session, sample_pdv, make_register, make_consumption,
                                              set_operating_config):
        set_operating_config(sample_pdv.tenant_id, {"consumos": {"al_cierre_sin_liquidar": "no_permitir_cierre"}})
        register = make_register(sample_pdv, is_open=True, opening_float=Decimal("2000"))
        consumption = make_consumption(sample_pdv, "1000", "400")

        with pytest.raises(CajaDomainError) as exc:
            close_register_manually(db_session, sample_pdv.tenant_id, register.id, Decimal("2000"))
        assert exc.value.code == "CIERRE_CONSUMOS_PENDIENTES_BLOQUEADO"
        db_session.refresh(register)
        assert register.is_open is True

        consumption.settlement_status = SettlementStatus.SETTLED.value
        db_session.commit()

        result = close_register_manually(db_session, sample_pdv.tenant_id, register.id, Decimal("2000"))
        assert result.variance == Decimal("0")
        assert result.settlement.count == 0

    def test_pending_consumptions_require_confirmation(self, db_session, sample_pdv, sample_user, make_register,
                                                       make_consumption, set_operating_config):
        set_operating_config(sample_pdv.tenant_id, {"consumos": {"al_cierre_sin_liquidar": "cobro_automatico_venta"}})
        register = make_register(sample_pdv, is_open=True)
        first = make_consumption(sample_pdv, "1000", "400")
        second = make_consumption(sample_pdv, "250", "100")

        with pytest.raises(CajaDomainError) as exc:
            close_register_manually(db_session, sample_pdv.tenant_id, register.id, Decimal("0"))
        assert exc.value.code == "CIERRE_REQUIERE_CONFIRMACION_CONSUMOS"
        assert exc.value.detail["accionConfigurada"] == "cobro_automatico_venta"

        result = close_register_manually(
            db_session, sample_pdv.tenant_id, register.id, Decimal("0"),
            acting_user_id=sample_user.id, confirm_pending_consumptions=True
        )
        assert result.settlement.count == 2
        assert result.settlement.total_charged == Decimal("1250")

        db_session.refresh(first)
        db_session.refresh(second)
        assert first.settlement_status == SettlementStatus.CHARGED.value
        assert second.settlement_status == SettlementStatus.CHARGED.value
        settlements = db_session.query(ConsumptionSettlement).all()
        assert {s.closing_id for s in settlements} == {result.closing_id}
        assert db_session.query(AuditEvent).filter(AuditEvent.action == "consumos_resueltos_por_cierre").count() == 1

    def test_next_register_rule_leaves_consumptions_pending(self, db_session, sample_pdv, make_register,
                                                            make_consumption):
        register = make_register(sample_pdv, is_open=True)
        consumption = make_consumption(sample_pdv, "1000", "400")

        result = close_register_manually(
            db_session, sample_pdv.tenant_id, register.id, Decimal("0"), confirm_pending_consumptions=True
        )
        assert result.settlement.rule == "pendiente_siguiente_caja"
        assert result.settlement.count == 0
        db_session.refresh(consumption)
        assert consumption.settlement_status == SettlementStatus.PENDING.value

    def test_off_register_requires_decision(self, db_session, sample_pdv, make_register, make_transaction):
        register = make_register(sample_pdv, is_open=True, opening_float=Decimal("1000"))
        make_transaction(register, "600", "efectivo", off_register=True)

        with pytest.raises(CajaDomainError) as exc:
            close_register_manually(db_session, sample_pdv.tenant_id, register.id, Decimal("1000"))
        assert exc.value.code == "CIERRE_REQUIERE_DECISION_FUERA_CAJA"
        assert exc.value.detail["cantidadPendiente"] == 1

    def test_off_register_included(self, db_session, sample_pdv, make_register, make_transaction):
        register = make_register(sample_pdv, is_open=True, opening_float=Decimal("1000"))
        make_transaction(register, "400", "efectivo")
        pending = make_transaction(register, "600", "efectivo", off_register=True)

        result = close_register_manually(
            db_session, sample_pdv.tenant_id, register.id, Decimal("2000"), include_off_register=True
        )

        assert result.expected_amount == Decimal("2000.00")
        assert result.variance == Decimal("0")
        assert result.off_register_included == 1
        assert result.off_register_total == Decimal("600.00")
        db_session.refresh(pending)
        assert pending.off_register_status == OffRegisterStatus.ASSIGNED.value
        assert pending.reconciled_closing_id == result.closing_id
        assert pending.reconciled_at is not None

    def test_off_register_excluded_stays_pending(self, db_session, sample_pdv, make_register, make_transaction,
                                                 set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(manejo_fuera_caja_al_cerrar="excluir"))
        register = make_register(sample_pdv, is_open=True, opening_float=Decimal("1000"))
        pending = make_transaction(register, "600", "efectivo", off_register=True)

        result = close_register_manually(db_session, sample_pdv.tenant_id, register.id, Decimal("1000"))

        assert result.include_off_register is False
        assert result.variance == Decimal("0")
        db_session.refresh(pending)
        assert pending.off_register_status == OffRegisterStatus.PENDING.value
        assert pending.reconciled_closing_id is None


# ===== CIERRE AUTOMÁTICO =====

class TestAutomaticCloseDue:

    def _register(self, opened_at, is_open=True):
        return CashRegister(is_open=is_open, opened_at=opened_at, opening_float=Decimal("0"))

    def _config(self, **kwargs):
        return OperatingConfig.model_validate(auto_close_config(**kwargs))

    def test_disabled(self):
        config = OperatingConfig.model_validate(caja_config(cierre_automatico_hora="22:00"))
        register = self._register(local(2026, 3, 9, 9, 0))
        assert is_automatic_close_due(register, config, local(2026, 3, 10, 9, 0)) is False

    def test_same_day_after_target(self):
        register = self._register(local(2026, 3, 10, 9, 0))
        assert is_automatic_close_due(register, self._config(hour="22:00"), local(2026, 3, 10, 22, 5)) is True

    def test_same_day_before_target(self):
        register = self._register(local(2026, 3, 10, 9, 0))
        assert is_automatic_close_due(register, self._config(hour="22:00"), local(2026, 3, 10, 21, 59)) is False

    def test_opened_after_target_is_not_closed_same_day(self):
        register = self._register(local(2026, 3, 10, 22, 30))
        assert is_automatic_close_due(register, self._config(hour="22:00"), local(2026, 3, 10, 23, 0)) is False

    def test_previous_operating_date(self):
        register = self._register(local(2026, 3, 9, 23, 0))
        assert is_automatic_close_due(register, self._config(hour="22:00"), local(2026, 3, 10, 8, 0)) is True

    def test_closed_register(self):
        register = self._register(None, is_open=False)
        assert is_automatic_close_due(register, self._config(), local(2026, 3, 10, 23, 0)) is False


class TestAutomaticClosing:

    def test_closes_with_zero_variance(self, db_session, sample_pdv, make_register, make_transaction,
                                       set_operating_config):
        set_operating_config(sample_pdv.tenant_id, auto_close_config("22:00"))
        register = make_register(sample_pdv, is_open=True, opening_float=Decimal("3000"),
                                 opened_at=local(2026, 3, 10, 9, 0))
        make_transaction(register, "1500", "efectivo", confirmed_at=local(2026, 3, 10, 12, 0))
        make_transaction(register, "900", "tarjeta", confirmed_at=local(2026, 3, 10, 13, 0))
        off = make_transaction(register, "200", "efectivo", confirmed_at=local(2026, 3, 10, 14, 0), off_register=True)

        config = OperatingConfig.model_validate(auto_close_config("22:00"))
        assert maybe_auto_close(db_session, register, config, now=local(2026, 3, 10, 22, 15)) is True

        closing = db_session.query(CashClosing).one()
        assert closing.is_automatic is True
        assert closing.closed_by is None
        assert closing.operating_date == date(2026, 3, 10)
        assert ensure_utc(closing.closed_at) == local(2026, 3, 10, 22, 0)
        assert closing.expected_amount == Decimal("4700.00")
        assert closing.counted_amount == closing.expected_amount
        assert closing.variance == Decimal("0")
        assert closing.total_card == Decimal("900.00")
        assert closing.off_register_included == 1
        assert closing.notes == "Cierre automatico por configuracion operativa"

        db_session.refresh(register)
        db_session.refresh(off)
        assert register.is_open is False
        assert register.opening_float == Decimal("0")
        assert off.reconciled_closing_id == closing.id

        control = db_session.query(AutomaticClosingControl).one()
        assert control.closing_id == closing.id
        assert control.target_time == "22:00"
        assert db_session.query(AuditEvent).filter(AuditEvent.action == "caja_cierre_automatico").count() == 1

    def test_sweep_is_idempotent(self, db_session, sample_company, make_pdv, make_register, set_operating_config):
        set_operating_config(sample_company.id, auto_close_config("22:00"))
        due_pdv = make_pdv("Sucursal Norte")
        idle_pdv = make_pdv("Sucursal Sur")
        make_register(due_pdv, is_open=True, opened_at=local(2026, 3, 9, 9, 0))
        make_register(idle_pdv)

        now = local(2026, 3, 10, 8, 0)
        first = run_automatic_closing_sweep(db_session, sample_company.id, now)
        second = run_automatic_closing_sweep(db_session, sample_company.id, now)

        assert first.points_of_sale_evaluated == 2
        assert first.closures_executed == 1
        assert second.closures_executed == 0
        assert db_session.query(CashClosing).count() == 1
        assert db_session.query(AutomaticClosingControl).count() == 1

    def test_existing_control_row_fences_the_close(self, db_session, sample_pdv, make_register):
        register = make_register(sample_pdv, is_open=True, opened_at=local(2026, 3, 9, 9, 0))
        db_session.add(AutomaticClosingControl(
            tenant_id=sample_pdv.tenant_id,
            pdv_id=sample_pdv.id,
            cash_register_id=register.id,
            operating_date=date(2026, 3, 9),
            target_time="22:00"
        ))
        db_session.commit()

        config = OperatingConfig.model_validate(auto_close_config("22:00"))
        assert maybe_auto_close(db_session, register, config, now=local(2026, 3, 10, 8, 0)) is False
        db_session.commit()

        db_session.refresh(register)
        assert register.is_open is True
        assert db_session.query(CashClosing).count() == 0

    def test_scheduled_reopen_after_close_shares_fence_key(self, db_session, sample_pdv, sample_user, make_register,
                                                           set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(
            apertura_modo="hora_programada", apertura_hora="08:00",
            cierre_automatico_habilitado=True, cierre_automatico_hora="22:00"
        ))
        register = make_register(sample_pdv, is_open=True, opened_at=local(2026, 3, 10, 9, 0))

        admission = admit_operation(
            db_session, sample_pdv.tenant_id, sample_pdv.id, OperationType.SALE,
            AdmissionInputs(user_id=sample_user.id), now=local(2026, 3, 10, 22, 15)
        )

        # cierra la jornada del 10 y reabre en el acto (ya pasaron las 08:00)
        assert admission.register_opened_now is True
        db_session.refresh(register)
        assert ensure_utc(register.opened_at) == local(2026, 3, 10, 22, 15)
        assert db_session.query(CashClosing).filter(CashClosing.is_automatic == True).count() == 1

        # la reapertura tiene la misma fecha operativa: (caja, 10/03, 22:00) ya está tomado
        result = run_automatic_closing_sweep(db_session, sample_pdv.tenant_id, local(2026, 3, 11, 23, 0))
        assert result.closures_executed == 0
        db_session.refresh(register)
        assert register.is_open is True
        assert db_session.query(AutomaticClosingControl).count() == 1

    def test_blocking_consumption_rule_skips_close(self, db_session, sample_pdv, make_register, make_consumption,
                                                   set_operating_config):
        set_operating_config(sample_pdv.tenant_id, auto_close_config(
            "22:00", al_cierre_sin_liquidar="no_permitir_cierre"
        ))
        register = make_register(sample_pdv, is_open=True, opened_at=local(2026, 3, 9, 9, 0))
        make_consumption(sample_pdv, "1000", "400")

        result = run_automatic_closing_sweep(db_session, sample_pdv.tenant_id, local(2026, 3, 10, 8, 0))

        assert result.closures_executed == 0
        db_session.refresh(register)
        assert register.is_open is True
        assert db_session.query(AutomaticClosingControl).count() == 0

    def test_applies_forgiven_rule(self, db_session, sample_pdv, make_register, make_consumption,
                                   set_operating_config):
        set_operating_config(sample_pdv.tenant_id, auto_close_config("22:00", al_cierre_sin_liquidar="perdonado"))
        make_register(sample_pdv, is_open=True, opened_at=local(2026, 3, 9, 9, 0))
        consumption = make_consumption(sample_pdv, "1000", "400")

        AutomaticClosingService(db_session).check_point_of_sale(
            sample_pdv.tenant_id, sample_pdv.id, local(2026, 3, 10, 8, 0)
        )

        db_session.refresh(consumption)
        closing = db_session.query(CashClosing).one()
        assert consumption.settlement_status == SettlementStatus.FORGIVEN.value
        assert closing.consumption_rule == "perdonado"
        assert closing.consumptions_settled == 1
        assert closing.consumptions_charged == Decimal("0")

    def test_celery_task_sweeps_every_company(self, db_session, session_factory, sample_company, make_pdv,
                                              make_register, set_operating_config, monkeypatch):
        from app.modules.pos import tasks

        set_operating_config(sample_company.id, auto_close_config("22:00"))
        make_register(make_pdv(), is_open=True, opened_at=local(2020, 1, 1, 9, 0))
        monkeypatch.setattr(tasks, "SessionLocal", session_factory)

        result = tasks.run_automatic_closing_sweeps()

        assert result["status"] == "completed"
        assert result["closures_executed"] == 1
        assert result["failed_tenants"] == []


# ===== FUERA DE CAJA =====

class TestOffRegisterDecisions:

    def test_assign_requires_open_register(self, db_session, sample_pdv, make_register, make_transaction):
        register = make_register(sample_pdv)
        sale = make_transaction(register, "700", "efectivo", off_register=True)

        with pytest.raises(CajaDomainError) as exc:
            OffRegisterService(db_session).decide(sample_pdv.tenant_id, OffRegisterDecision(
                pdv_id=sample_pdv.id, transaction_ids=[sale.id], action=OffRegisterAction.ASSIGN_TO_CURRENT
            ))
        assert exc.value.code == "CAJA_CERRADA_REQUIERE_APERTURA"

    def test_assign_opening_register(self, db_session, sample_pdv, sample_user, make_register, make_transaction):
        register = make_register(sample_pdv)
        sale = make_transaction(register, "700", "efectivo", off_register=True)

        result = OffRegisterService(db_session).decide(sample_pdv.tenant_id, OffRegisterDecision(
            pdv_id=sample_pdv.id, transaction_ids=[sale.id], action=OffRegisterAction.ASSIGN_TO_CURRENT,
            open_register_if_needed=True, opening_float=Decimal("1000")
        ), user_id=sample_user.id)

        assert result.processed == 1
        assert result.register_open is True
        db_session.refresh(register)
        assert compute_period_totals(db_session, register).total_cash == Decimal("700.00")

        closed = close_register_manually(db_session, sample_pdv.tenant_id, register.id, Decimal("1700"))
        assert closed.variance == Decimal("0")
        db_session.refresh(sale)
        assert sale.reconciled_closing_id == closed.closing_id

    def test_balance_only_leaves_pending_list(self, db_session, sample_pdv, make_register, make_transaction):
        register = make_register(sample_pdv)
        sale = make_transaction(register, "700", "efectivo", off_register=True)
        service = OffRegisterService(db_session)

        listing = service.list_off_register_sales(sample_pdv.tenant_id, sample_pdv.id)
        assert listing["summary"].pending_count == 1

        service.decide(sample_pdv.tenant_id, OffRegisterDecision(
            pdv_id=sample_pdv.id, transaction_ids=[sale.id], action=OffRegisterAction.BALANCE_ONLY,
            reason="Venta en evento"
        ))

        listing = service.list_off_register_sales(sample_pdv.tenant_id, sample_pdv.id)
        assert listing["summary"].pending_count == 0
        db_session.refresh(sale)
        assert sale.off_register_status == OffRegisterStatus.BALANCE_ONLY.value
        assert db_session.query(AuditEvent).filter(AuditEvent.action == "fuera_caja_decision_masiva").count() == 1


# ===== ENDPOINTS =====

class TestCashRegisterEndpoints:

    def test_status_provisions_virtual_register(self, client, sample_pdv, sample_user, auth_headers):
        response = client.get(
            "/api/v1/cash-registers/status", params={"pdv_id": str(sample_pdv.id)},
            headers=auth_headers(sample_user)
        )
        assert response.status_code == 200
        body = response.json()
        assert body["is_virtual"] is True
        assert body["is_open"] is False

    def test_confirm_sale_decision_then_open(self, client, sample_pdv, sample_user, auth_headers,
                                             set_operating_config):
        set_operating_config(sample_pdv.tenant_id, caja_config(apertura_modo="primera_venta"))
        headers = auth_headers(sample_user)
        payload = {"pdv_id": str(sample_pdv.id), "total": "1500", "payment_method_name": "efectivo"}

        response = client.post("/api/v1/sales/confirm", json=payload, headers=headers)
        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "CAJA_REQUIERE_MONTO_INICIAL_PRIMERA_VENTA"
        assert detail["requiereMontoInicialPrimeraVenta"] is True
        assert detail["accionSugerida"] == "abrir"

        response = client.post("/api/v1/sales/confirm", headers=headers, json={
            **payload, "closed_register_action": "abrir", "opening_float": "12000"
        })
        assert response.status_code == 201
        assert response.json()["register_opened_now"] is True

    def test_close_endpoint_error_payload(self, client, sample_pdv, sample_user, auth_headers,
                                          make_register, make_transaction):
        register = make_register(sample_pdv, is_open=True)
        make_transaction(register, "100", "efectivo", off_register=True)

        response = client.post(
            f"/api/v1/cash-registers/{register.id}/close",
            json={"counted_amount": "0"}, headers=auth_headers(sample_user)
        )
        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "CIERRE_REQUIERE_DECISION_FUERA_CAJA"
        assert detail["totalPendiente"] == 100.0

    def test_open_and_close_endpoints(self, client, sample_pdv, sample_user, auth_headers, make_register):
        register = make_register(sample_pdv)
        headers = auth_headers(sample_user)

        response = client.post(
            f"/api/v1/cash-registers/{register.id}/open", json={"opening_float": "2500"}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["is_open"] is True

        response = client.post(
            f"/api/v1/cash-registers/{register.id}/close", json={"counted_amount": "2500"}, headers=headers
        )
        assert response.status_code == 200
        assert Decimal(response.json()["variance"]) == Decimal("0")

        response = client.get("/api/v1/cash-registers/closings", headers=headers)
        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_sweep_endpoint(self, client, sample_pdv, sample_user, auth_headers):
        response = client.post("/api/v1/cash-registers/automatic-closing/sweep", headers=auth_headers(sample_user))
        assert response.status_code == 200
        assert response.json() == {"points_of_sale_evaluated": 1, "closures_executed": 0}

    def test_cashier_cannot_close(self, client, sample_pdv, make_user, auth_headers, make_register):
        register = make_register(sample_pdv, is_open=True)
        cashier = make_user("cashier")
        response = client.post(
            f"/api/v1/cash-registers/{register.id}/close", json={"counted_amount": "0"},
            headers=auth_headers(cashier)
        )
        assert response.status_code == 403

    def test_missing_company_header(self, client, sample_user, auth_headers):
        headers = auth_headers(sample_user)
        headers.pop("X-Company-ID")
        response = client.get("/api/v1/cash-registers/closings", headers=headers)
        assert response.status_code == 400
