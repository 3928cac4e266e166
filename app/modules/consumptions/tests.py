"""
Tests para consumos del staff

Cubren:
- Registro (admisión de la caja antes de guardar)
- Cancelación rápida dentro de la ventana
- Liquidación manual por regla y transacciones generadas
- Política de liquidación al cierre de caja
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from fastapi import HTTPException

from app.common.exceptions import CajaDomainError
from app.modules.audit.models import AuditEvent
from app.modules.consumptions.models import StaffConsumption, ConsumptionSettlement, SettlementStatus
from app.modules.consumptions.schemas import (
    ConsumptionCreate, ConsumptionItem, QuickCancelRequest, ManualSettlementRequest
)
from app.modules.consumptions.service import ConsumptionService, register_consumption, settle_consumptions_manually
from app.modules.consumptions.settlement import count_pending_consumptions, settle_pending_consumptions
from app.modules.pos.models import POSTransaction, TransactionType, OffRegisterStatus


def coffee(quantity="2", price="750", cost="300"):
    quantity, price, cost = Decimal(quantity), Decimal(price), Decimal(cost)
    return ConsumptionItem(
        name="Café con leche",
        quantity=quantity,
        unit_price=price,
        unit_cost=cost,
        subtotal_sale=quantity * price,
        subtotal_cost=quantity * cost
    )


class TestRegisterConsumption:

    def test_register_with_open_register(self, db_session, sample_pdv, sample_user, make_register):
        make_register(sample_pdv, is_open=True)

        admission, consumption = register_consumption(
            db_session, sample_pdv.tenant_id,
            ConsumptionCreate(user_id=sample_user.id, pdv_id=sample_pdv.id, items=[
                coffee(), coffee(quantity="1", price="1200", cost="0")
            ]),
            acting_user_id=sample_user.id
        )

        assert admission.admitted
        assert consumption.settlement_status == SettlementStatus.PENDING.value
        assert consumption.sale_total == Decimal("2700.00")
        assert consumption.cost_total == Decimal("600.00")
        assert len(consumption.items) == 2
        assert db_session.query(AuditEvent).filter(AuditEvent.action == "consumo_registrado").count() == 1

    def test_closed_register_requires_decision(self, db_session, sample_pdv, sample_user):
        admission, consumption = register_consumption(
            db_session, sample_pdv.tenant_id,
            ConsumptionCreate(user_id=sample_user.id, pdv_id=sample_pdv.id, items=[coffee()]),
            acting_user_id=sample_user.id
        )

        assert consumption is None
        assert admission.decision_required is True
        assert db_session.query(StaffConsumption).count() == 0

    def test_off_register_decision_keeps_register_closed(self, db_session, sample_pdv, sample_user):
        admission, consumption = register_consumption(
            db_session, sample_pdv.tenant_id,
            ConsumptionCreate(
                user_id=sample_user.id, pdv_id=sample_pdv.id, items=[coffee()],
                closed_register_action="fuera_caja"
            ),
            acting_user_id=sample_user.id
        )

        assert admission.off_register is True
        assert admission.register_open is False
        assert consumption.settlement_status == SettlementStatus.PENDING.value

    def test_endpoint_returns_409_then_201(self, client, sample_pdv, sample_user, auth_headers):
        headers = auth_headers(sample_user)
        payload = {
            "user_id": str(sample_user.id),
            "pdv_id": str(sample_pdv.id),
            "items": [{
                "name": "Medialuna", "quantity": "3", "unit_price": "400", "unit_cost": "150",
                "subtotal_sale": "1200", "subtotal_cost": "450"
            }]
        }

        response = client.post("/api/v1/consumptions", json=payload, headers=headers)
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "CAJA_CERRADA_REQUIERE_DECISION"

        response = client.post(
            "/api/v1/consumptions", headers=headers,
            json={**payload, "closed_register_action": "abrir", "opening_float": "0"}
        )
        assert response.status_code == 201
        assert response.json()["settlement_status"] == "pendiente"

        response = client.get("/api/v1/consumptions", headers=headers, params={"status": "pendiente"})
        assert response.status_code == 200
        assert response.json()["total"] == 1


class TestQuickCancel:

    def test_cancel_within_window(self, db_session, sample_pdv, sample_user, make_consumption):
        consumption = make_consumption(sample_pdv, "900", "300")
        consumption_id = consumption.id
        created_at = consumption.created_at.replace(tzinfo=timezone.utc) \
            if consumption.created_at.tzinfo is None else consumption.created_at

        result = ConsumptionService(db_session).quick_cancel(
            sample_pdv.tenant_id,
            QuickCancelRequest(user_id=sample_user.id, pdv_id=sample_pdv.id),
            acting_user_id=sample_user.id,
            now=created_at + timedelta(seconds=2)
        )

        assert result.id == consumption_id
        assert result.sale_total == Decimal("900")
        assert db_session.get(StaffConsumption, consumption_id) is None
        assert db_session.query(AuditEvent).filter(AuditEvent.action == "consumo_cancelado_rapido").count() == 1

    def test_window_expired(self, db_session, sample_pdv, sample_user, make_consumption):
        make_consumption(sample_pdv, "900", "300",
                         created_at=datetime.now(timezone.utc) - timedelta(seconds=30))

        with pytest.raises(HTTPException) as exc:
            ConsumptionService(db_session).quick_cancel(
                sample_pdv.tenant_id, QuickCancelRequest(user_id=sample_user.id, pdv_id=sample_pdv.id)
            )
        assert exc.value.status_code == 404
        assert db_session.query(StaffConsumption).count() == 1

    def test_settled_consumption_is_not_cancelled(self, db_session, sample_pdv, sample_user, make_consumption):
        make_consumption(sample_pdv, "900", "300", status=SettlementStatus.CHARGED.value)
        with pytest.raises(HTTPException):
            ConsumptionService(db_session).quick_cancel(
                sample_pdv.tenant_id, QuickCancelRequest(user_id=sample_user.id, pdv_id=sample_pdv.id)
            )


class TestManualSettlement:

    def _settle(self, db_session, tenant_id, ids, rule, rule_value=None, admin_id=None, **kwargs):
        return settle_consumptions_manually(
            db_session, tenant_id,
            ManualSettlementRequest(consumption_ids=ids, rule=rule, rule_value=rule_value, **kwargs),
            admin_id=admin_id
        )

    def test_sale_price_charges_into_open_register(self, db_session, sample_pdv, sample_user, make_register,
                                                   make_consumption):
        register = make_register(sample_pdv, is_open=True)
        consumption = make_consumption(sample_pdv, "1000", "400")

        result = self._settle(db_session, sample_pdv.tenant_id, [consumption.id], "precio_venta",
                              admin_id=sample_user.id, reason="Fin de turno")

        assert result.settled == 1
        assert result.total_charged == Decimal("1000.00")
        assert result.amount_in_register == Decimal("1000.00")
        assert result.amount_off_register == Decimal("0")

        db_session.refresh(consumption)
        assert consumption.settlement_status == SettlementStatus.CHARGED.value
        assert consumption.settled_at is not None

        transaction = db_session.query(POSTransaction).one()
        assert transaction.transaction_type == TransactionType.STAFF_CONSUMPTION.value
        assert transaction.cash_register_id == register.id
        assert transaction.off_register is False
        assert transaction.payment_method_name == "efectivo"

        settlement = db_session.query(ConsumptionSettlement).one()
        assert settlement.closing_id is None
        assert settlement.admin_id == sample_user.id
        assert settlement.reason == "Fin de turno"

    def test_cost_price_with_closed_register_goes_off_register(self, db_session, sample_pdv, make_consumption):
        consumption = make_consumption(sample_pdv, "1000", "400")

        result = self._settle(db_session, sample_pdv.tenant_id, [consumption.id], "precio_costo",
                              payment_method="transferencia")

        assert result.amount_off_register == Decimal("400.00")
        db_session.refresh(consumption)
        assert consumption.settlement_status == SettlementStatus.PARTIAL.value
        transaction = db_session.query(POSTransaction).one()
        assert transaction.off_register is True
        assert transaction.off_register_status == OffRegisterStatus.PENDING.value
        assert transaction.payment_method_name == "transferencia"

    def test_percentage_rounds_half_up(self, db_session, sample_pdv, make_register, make_consumption):
        make_register(sample_pdv, is_open=True)
        consumption = make_consumption(sample_pdv, "100.05", "40")

        result = self._settle(db_session, sample_pdv.tenant_id, [consumption.id], "porcentaje", Decimal("50"))

        assert result.total_charged == Decimal("50.03")
        db_session.refresh(consumption)
        assert consumption.settlement_status == SettlementStatus.PARTIAL.value

    def test_fixed_amount_capped_at_sale_total(self, db_session, sample_pdv, make_register, make_consumption):
        make_register(sample_pdv, is_open=True)
        small = make_consumption(sample_pdv, "300", "100")
        large = make_consumption(sample_pdv, "2000", "800")

        result = self._settle(db_session, sample_pdv.tenant_id, [small.id, large.id], "monto_fijo", Decimal("500"))

        assert result.settled == 2
        assert result.total_charged == Decimal("800.00")
        db_session.refresh(small)
        db_session.refresh(large)
        assert small.settlement_status == SettlementStatus.CHARGED.value
        assert large.settlement_status == SettlementStatus.PARTIAL.value

    def test_forgiven_creates_no_transaction(self, db_session, sample_pdv, make_consumption):
        consumption = make_consumption(sample_pdv, "1000", "400")

        result = self._settle(db_session, sample_pdv.tenant_id, [consumption.id], "perdonado")

        assert result.total_charged == Decimal("0")
        assert result.transactions_created == 0
        db_session.refresh(consumption)
        assert consumption.settlement_status == SettlementStatus.FORGIVEN.value
        assert db_session.query(POSTransaction).count() == 0

    def test_rule_value_required(self, db_session, sample_pdv, make_consumption):
        consumption = make_consumption(sample_pdv, "1000", "400")
        with pytest.raises(CajaDomainError) as exc:
            self._settle(db_session, sample_pdv.tenant_id, [consumption.id], "porcentaje")
        assert exc.value.code == "REGLA_LIQUIDACION_INVALIDA"
        assert exc.value.status_code == 400

    def test_percentage_above_hundred(self, db_session, sample_pdv, make_consumption):
        consumption = make_consumption(sample_pdv, "1000", "400")
        with pytest.raises(CajaDomainError):
            self._settle(db_session, sample_pdv.tenant_id, [consumption.id], "porcentaje", Decimal("150"))
        db_session.refresh(consumption)
        assert consumption.settlement_status == SettlementStatus.PENDING.value

    def test_skips_settled_and_unknown(self, db_session, sample_pdv, make_consumption):
        pending = make_consumption(sample_pdv, "1000", "400")
        settled = make_consumption(sample_pdv, "500", "200", status=SettlementStatus.FORGIVEN.value)
        unknown = uuid4()

        result = self._settle(db_session, sample_pdv.tenant_id, [pending.id, settled.id, unknown], "perdonado")

        assert result.settled == 1
        assert result.skipped == 2
        assert set(result.skipped_ids) == {settled.id, unknown}
        assert db_session.query(ConsumptionSettlement).count() == 1

    def test_endpoint_requires_admin(self, client, sample_pdv, make_user, auth_headers, make_consumption):
        consumption = make_consumption(sample_pdv, "1000", "400")
        cashier = make_user("cashier")
        response = client.post("/api/v1/consumptions/settle", headers=auth_headers(cashier), json={
            "consumption_ids": [str(consumption.id)], "rule": "perdonado"
        })
        assert response.status_code == 403


class TestClosingSettlement:

    def test_pending_count(self, db_session, sample_pdv, make_consumption):
        make_consumption(sample_pdv, "1000", "400")
        make_consumption(sample_pdv, "250", "100")
        make_consumption(sample_pdv, "999", "100", status=SettlementStatus.CHARGED.value)

        assert count_pending_consumptions(db_session, sample_pdv.tenant_id, sample_pdv.id) == (2, Decimal("1250"))

    def test_cost_rule(self, db_session, sample_pdv, make_consumption):
        consumption = make_consumption(sample_pdv, "1000", "400")

        summary = settle_pending_consumptions(
            db_session, sample_pdv.tenant_id, sample_pdv.id, None, "cobro_automatico_costo"
        )
        db_session.commit()

        assert summary.count == 1
        assert summary.total_charged == Decimal("400")
        db_session.refresh(consumption)
        assert consumption.settlement_status == SettlementStatus.CHARGED.value
        settlement = db_session.query(ConsumptionSettlement).one()
        assert settlement.rule == "precio_costo"
        assert settlement.amount_charged == Decimal("400")

    def test_non_mutating_rules(self, db_session, sample_pdv, make_consumption):
        consumption = make_consumption(sample_pdv, "1000", "400")
        for rule in ("pendiente_siguiente_caja", "no_permitir_cierre"):
            summary = settle_pending_consumptions(db_session, sample_pdv.tenant_id, sample_pdv.id, None, rule)
            assert summary.count == 0
        db_session.refresh(consumption)
        assert consumption.settlement_status == SettlementStatus.PENDING.value
