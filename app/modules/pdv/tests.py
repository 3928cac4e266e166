"""
Tests para puntos de venta (PDV)
"""
import pytest
from decimal import Decimal
from fastapi import HTTPException

from app.common.exceptions import CajaDomainError
from app.modules.pdv import service
from app.modules.pdv.models import PDV
from app.modules.pdv.schemas import PDVcreate


class TestPDVService:

    def test_create_and_list(self, db_session, sample_company):
        service.create_pdv(PDVcreate(name="  Kiosco Estación  "), db_session, sample_company.id)
        result = service.get_all_pdvs(db_session, sample_company.id)
        assert result["total"] == 1
        assert result["pdvs"][0].name == "Kiosco Estación"

    def test_duplicate_name(self, db_session, sample_pdv):
        with pytest.raises(HTTPException) as exc:
            service.create_pdv(PDVcreate(name=sample_pdv.name), db_session, sample_pdv.tenant_id)
        assert exc.value.status_code == 400

    def test_deactivate_with_open_register(self, db_session, sample_pdv, make_register):
        register = make_register(sample_pdv, is_open=True, opening_float=Decimal("1000"))

        with pytest.raises(CajaDomainError) as exc:
            service.set_pdv_status(sample_pdv.id, False, db_session, sample_pdv.tenant_id)

        assert exc.value.code == "PUNTO_VENTA_TIENE_CAJA_ABIERTA"
        assert exc.value.detail["cajaId"] == str(register.id)
        assert db_session.get(PDV, sample_pdv.id).is_active is True

    def test_deactivate_with_closed_register(self, db_session, sample_pdv, make_register):
        make_register(sample_pdv)
        pdv = service.set_pdv_status(sample_pdv.id, False, db_session, sample_pdv.tenant_id)
        assert pdv.is_active is False


class TestPDVEndpoints:

    def test_status_endpoint_conflict(self, client, sample_pdv, sample_user, auth_headers, make_register):
        make_register(sample_pdv, is_open=True)
        response = client.put(
            f"/pdvs/{sample_pdv.id}/status", json={"is_active": False}, headers=auth_headers(sample_user)
        )
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "PUNTO_VENTA_TIENE_CAJA_ABIERTA"

    def test_other_company_pdv_not_found(self, client, sample_user, auth_headers, make_pdv, db_session):
        from app.modules.company.models import Company
        other = Company(name="Otra Empresa", is_active=True)
        db_session.add(other)
        db_session.commit()
        foreign = make_pdv("Ajeno", company=other)

        response = client.get(f"/pdvs/{foreign.id}", headers=auth_headers(sample_user))
        assert response.status_code == 404
