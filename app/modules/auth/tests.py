"""
Tests de autenticación y roles
"""
from datetime import datetime, timedelta, timezone

import jwt

from app.core.config import settings
from app.modules.auth.service import get_user_role


class TestUserRole:

    def test_role_in_company(self, db_session, sample_company, make_user):
        cashier = make_user("cashier")
        role = get_user_role(db_session, cashier.id, sample_company.id)
        assert role.role_id == "cashier"

    def test_no_membership(self, db_session, sample_company, sample_user):
        from app.modules.company.models import Company
        other = Company(name="Sin Acceso", is_active=True)
        db_session.add(other)
        db_session.commit()
        assert get_user_role(db_session, sample_user.id, other.id) is None
        assert get_user_role(db_session, None, sample_company.id) is None


class TestAuthDependencies:

    def test_missing_token(self, client, sample_company):
        response = client.get("/api/v1/operating-config", headers={"X-Company-ID": str(sample_company.id)})
        assert response.status_code in (401, 403)

    def test_expired_token(self, client, sample_company, sample_user):
        token = jwt.encode(
            {"sub": str(sample_user.id), "type": "access",
             "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
            settings.APP_SECRET_STRING,
            algorithm=settings.ALGORITHM
        )
        response = client.get("/api/v1/operating-config", headers={
            "Authorization": f"Bearer {token}", "X-Company-ID": str(sample_company.id)
        })
        assert response.status_code == 401

    def test_company_without_membership(self, client, db_session, sample_user, auth_headers):
        from app.modules.company.models import Company
        other = Company(name="Ajena", is_active=True)
        db_session.add(other)
        db_session.commit()
        response = client.get("/api/v1/operating-config", headers=auth_headers(sample_user, other))
        assert response.status_code == 403


class TestTenantMiddleware:

    def test_health_without_company(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert "X-Tenant-ID" not in response.headers

    def test_missing_company(self, client, sample_user, auth_headers):
        headers = auth_headers(sample_user)
        headers.pop("X-Company-ID")
        response = client.get("/api/v1/operating-config", headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "EMPRESA_REQUERIDA"

    def test_invalid_company(self, client, sample_user, auth_headers):
        headers = auth_headers(sample_user)
        headers["X-Company-ID"] = "no-es-un-uuid"
        response = client.get("/api/v1/operating-config", headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "EMPRESA_INVALIDA"

    def test_company_echoed_in_response(self, client, sample_company, sample_user, auth_headers):
        response = client.get("/api/v1/operating-config", headers=auth_headers(sample_user))
        assert response.status_code == 200
        assert response.headers["X-Tenant-ID"] == str(sample_company.id)
