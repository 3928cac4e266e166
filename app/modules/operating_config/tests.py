"""
Tests para la configuración operativa

Cubren:
- Merge profundo (None no sobrescribe, listas reemplazan)
- Resolución defaults ← empresa ← punto de venta
- Fallback a defaults ante payloads inválidos
- Administración por alcance (empresa / pv)
"""

import pytest
from fastapi import HTTPException
from uuid import uuid4

from app.modules.audit.models import AuditEvent
from app.modules.operating_config.schemas import OperatingConfig, OperatingConfigUpdate
from app.modules.operating_config.service import (
    deep_merge, normalize_config_input, resolve_operating_config,
    get_operating_config, update_operating_config
)


class TestDeepMerge:

    def test_nested_dicts_merge_recursively(self):
        base = {"caja": {"apertura_modo": "manual", "accion_caja_cerrada": "preguntar"}}
        override = {"caja": {"apertura_modo": "primera_venta"}}
        assert deep_merge(base, override) == {
            "caja": {"apertura_modo": "primera_venta", "accion_caja_cerrada": "preguntar"}
        }

    def test_none_does_not_override(self):
        base = {"caja": {"cierre_automatico_hora": "23:00"}}
        assert deep_merge(base, {"caja": {"cierre_automatico_hora": None}}) == base

    def test_lists_replace_wholesale(self):
        base = {"caja": {"apertura_roles_permitidos": ["owner", "admin"]}}
        merged = deep_merge(base, {"caja": {"apertura_roles_permitidos": ["cashier"]}})
        assert merged["caja"]["apertura_roles_permitidos"] == ["cashier"]

    def test_inputs_are_not_mutated(self):
        base = {"caja": {"apertura_modo": "manual"}}
        override = {"caja": {"apertura_modo": "hora_programada"}}
        deep_merge(base, override)
        assert base == {"caja": {"apertura_modo": "manual"}}

    def test_normalize_string_and_garbage(self):
        assert normalize_config_input('{"caja": {"apertura_modo": "manual"}}') == {"caja": {"apertura_modo": "manual"}}
        assert normalize_config_input("no es json") == {}
        assert normalize_config_input(["caja"]) == {}
        assert normalize_config_input(None) == {}


class TestResolveOperatingConfig:

    def test_defaults_without_overrides(self, db_session, sample_company):
        config = resolve_operating_config(db_session, sample_company.id)
        assert config == OperatingConfig()
        assert config.caja.apertura_modo == "manual"
        assert config.caja.permitir_ventas_fuera_caja is True
        assert config.caja.manejo_fuera_caja_al_cerrar == "preguntar"
        assert config.consumos.al_cierre_sin_liquidar == "pendiente_siguiente_caja"

    def test_pdv_override_wins_over_tenant(self, db_session, sample_company, sample_pdv, set_operating_config):
        set_operating_config(sample_company.id, {
            "caja": {"apertura_modo": "primera_venta", "accion_caja_cerrada": "bloquear"}
        })
        set_operating_config(sample_company.id, {"caja": {"apertura_modo": "manual"}}, pdv_id=sample_pdv.id)

        config = resolve_operating_config(db_session, sample_company.id, sample_pdv.id)
        assert config.caja.apertura_modo == "manual"
        assert config.caja.accion_caja_cerrada == "bloquear"

        tenant_only = resolve_operating_config(db_session, sample_company.id)
        assert tenant_only.caja.apertura_modo == "primera_venta"

    def test_unknown_keys_are_dropped(self, db_session, sample_company, set_operating_config):
        set_operating_config(sample_company.id, {"caja": {"color": "rojo"}, "extra": {"x": 1}})
        config = resolve_operating_config(db_session, sample_company.id)
        assert config.model_dump() == OperatingConfig().model_dump()

    def test_invalid_value_falls_back_to_defaults(self, db_session, sample_company, set_operating_config):
        set_operating_config(sample_company.id, {
            "caja": {"apertura_modo": "cuando_quiera", "cierre_automatico_habilitado": True}
        })
        config = resolve_operating_config(db_session, sample_company.id)
        assert config == OperatingConfig()

    def test_string_payload_is_parsed(self, db_session, sample_company, set_operating_config):
        set_operating_config(sample_company.id, '{"consumos": {"al_cierre_sin_liquidar": "perdonado"}}')
        config = resolve_operating_config(db_session, sample_company.id)
        assert config.consumos.al_cierre_sin_liquidar == "perdonado"

    def test_invalid_hour_falls_back(self, db_session, sample_company, set_operating_config):
        set_operating_config(sample_company.id, {"caja": {"cierre_automatico_hora": "25:99"}})
        assert resolve_operating_config(db_session, sample_company.id).caja.cierre_automatico_hora is None


class TestOperatingConfigAdmin:

    def test_update_tenant_scope_merges_and_audits(self, db_session, sample_company, sample_user):
        update_operating_config(db_session, sample_company.id, OperatingConfigUpdate(
            scope="empresa",
            config={"caja": {"apertura_modo": "primera_venta"}}
        ), user_id=sample_user.id)
        result = update_operating_config(db_session, sample_company.id, OperatingConfigUpdate(
            scope="empresa",
            config={"caja": {"accion_caja_cerrada": "fuera_caja"}}
        ), user_id=sample_user.id)

        assert result.saved_config == {
            "caja": {"apertura_modo": "primera_venta", "accion_caja_cerrada": "fuera_caja"}
        }
        assert result.effective_config.caja.apertura_modo == "primera_venta"
        assert db_session.query(AuditEvent).filter(
            AuditEvent.action == "configuracion_operativa_actualizada"
        ).count() == 2

    def test_pv_scope_requires_pdv(self, db_session, sample_company):
        with pytest.raises(HTTPException) as exc:
            get_operating_config(db_session, sample_company.id, scope="pv")
        assert exc.value.status_code == 400

    def test_pv_scope_unknown_pdv(self, db_session, sample_company):
        with pytest.raises(HTTPException) as exc:
            get_operating_config(db_session, sample_company.id, scope="pv", pdv_id=uuid4())
        assert exc.value.status_code == 404
        assert exc.value.detail["error"] == "PUNTO_VENTA_NO_ENCONTRADO"

    def test_router_roundtrip(self, client, sample_company, sample_pdv, sample_user, auth_headers):
        headers = auth_headers(sample_user)
        response = client.put("/api/v1/operating-config", headers=headers, json={
            "scope": "pv",
            "pdv_id": str(sample_pdv.id),
            "config": {"caja": {"cierre_automatico_habilitado": True, "cierre_automatico_hora": "22:30"}}
        })
        assert response.status_code == 200
        body = response.json()
        assert body["effective_config"]["caja"]["cierre_automatico_hora"] == "22:30"

        response = client.get(
            "/api/v1/operating-config", headers=headers,
            params={"scope": "pv", "pdv_id": str(sample_pdv.id)}
        )
        assert response.status_code == 200
        assert response.json()["saved_config"]["caja"]["cierre_automatico_habilitado"] is True

    def test_router_rejects_bad_hour(self, client, sample_user, auth_headers):
        response = client.put("/api/v1/operating-config", headers=auth_headers(sample_user), json={
            "scope": "empresa",
            "config": {"caja": {"cierre_automatico_hora": "7pm"}}
        })
        assert response.status_code == 422

    def test_router_requires_admin_role(self, client, make_user, auth_headers):
        cashier = make_user("cashier")
        response = client.get("/api/v1/operating-config", headers=auth_headers(cashier))
        assert response.status_code == 403
