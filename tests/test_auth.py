"""
Tests de autenticación y resolución de tenant
"""
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement.modules.auth.utils import create_access_token
from settlement.modules.sales.models import Sale, SaleStatus
from settlement.modules.stores.models import Store


def _bearer(claims):
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def other_store(db_session):
    store = Store(name="Sucursal Norte", slug="sucursal-norte")
    db_session.add(store)
    db_session.commit()
    db_session.refresh(store)
    return store


@pytest.fixture
def other_sale(db_session, other_store):
    sale = Sale(tenant_id=other_store.id, status=SaleStatus.CONFIRMED, total_amount=Decimal("100.00"))
    db_session.add(sale)
    db_session.commit()
    db_session.refresh(sale)
    return sale


class TestTenantResolution:

    def test_header_cannot_switch_token_tenant(self, client, auth_headers, other_store, other_sale):
        headers = {**auth_headers, "X-Tenant-ID": str(other_store.id)}
        response = client.get(f"/api/v1/sales/{other_sale.id}/balance", headers=headers)

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "TENANT_FORBIDDEN"

    def test_query_cannot_switch_token_tenant(self, client, auth_headers, other_store, other_sale):
        response = client.get(
            f"/api/v1/sales/{other_sale.id}/balance?tenantId={other_store.id}", headers=auth_headers
        )
        assert response.status_code == 403

    def test_header_matching_token_tenant(self, client, auth_headers, tenant_id, sale):
        headers = {**auth_headers, "X-Tenant-ID": str(tenant_id)}
        response = client.get(f"/api/v1/sales/{sale.id}/balance", headers=headers)
        assert response.status_code == 200

    def test_token_tenant_hides_other_sales(self, client, auth_headers, other_sale):
        response = client.get(f"/api/v1/sales/{other_sale.id}/balance", headers=auth_headers)
        assert response.status_code == 404

    def test_header_used_when_token_has_no_tenant(self, client, store, other_store, other_sale):
        headers = {**_bearer({"sub": str(uuid4())}), "X-Tenant-ID": str(other_store.id)}
        response = client.get(f"/api/v1/sales/{other_sale.id}/balance", headers=headers)

        assert response.status_code == 200
        assert Decimal(response.json()["total_amount"]) == Decimal("100.00")

    def test_default_store_without_tenant(self, client, sale):
        response = client.get(f"/api/v1/sales/{sale.id}/balance", headers=_bearer({"sub": str(uuid4())}))
        assert response.status_code == 200

    def test_invalid_tenant_header(self, client, auth_headers, sale):
        headers = {**auth_headers, "X-Tenant-ID": "no-es-uuid"}
        response = client.get(f"/api/v1/sales/{sale.id}/balance", headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_TENANT"

    def test_token_without_subject(self, client, sale):
        response = client.get(f"/api/v1/sales/{sale.id}/balance", headers=_bearer({"tenant_id": str(uuid4())}))
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "INVALID_TOKEN"
