"""
Tests para la resolución de tenant
"""
import pytest
from uuid import uuid4
from fastapi import HTTPException

from app.modules.company.models import Company
from app.modules.company.service import get_default_tenant_id, get_tenant_id_for_pdv


class TestTenantResolution:

    def test_tenant_from_pdv(self, db_session, sample_pdv):
        other = Company(name="Segunda Empresa", is_active=True)
        db_session.add(other)
        db_session.commit()
        assert get_tenant_id_for_pdv(db_session, sample_pdv.id) == sample_pdv.tenant_id

    def test_unknown_pdv_falls_back_to_default(self, db_session, sample_company):
        assert get_tenant_id_for_pdv(db_session, uuid4()) == sample_company.id
        assert get_tenant_id_for_pdv(db_session, None) == sample_company.id

    def test_inactive_pdv_falls_back_to_default(self, db_session, sample_company, make_pdv):
        pdv = make_pdv("Cerrado", is_active=False)
        assert get_tenant_id_for_pdv(db_session, pdv.id) == sample_company.id

    def test_no_companies(self, db_session):
        with pytest.raises(HTTPException) as exc:
            get_default_tenant_id(db_session)
        assert exc.value.status_code == 500
