# emr_core/catalog/tests/test_catalog.py
from decimal import Decimal

import pytest
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from emr_core.audit.models import AuditAction, AuditEvent
from emr_core.catalog.models import CatalogTest
from emr_core.catalog.selectors import active_tests_by_id, list_tests, lookup
from emr_core.catalog.services import CatalogService

BASE = "/api/v1/catalog/tests/"


@pytest.mark.django_db
def test_upsert_creates_then_updates_by_code(admin_actor):
    obj = CatalogService.upsert(actor=admin_actor, code="tsh", name="Thyroid Stimulating Hormone", unit_price="12.5")
    assert obj.code == "TSH"
    assert obj.unit_price == Decimal("12.50")

    again = CatalogService.upsert(actor=admin_actor, code="TSH", name="Thyroid Stimulating Hormone", unit_price=14)
    assert again.id == obj.id
    assert again.unit_price == Decimal("14.00")
    assert CatalogTest.objects.count() == 1

    actions = list(AuditEvent.objects.filter(entity="catalogTest").order_by("id").values_list("action", flat=True))
    assert actions == [AuditAction.CREATE, AuditAction.UPDATE]


@pytest.mark.django_db
def test_upsert_validation(admin_actor, t1):
    with pytest.raises(ValidationError):
        CatalogService.upsert(actor=admin_actor, code="X1", name="Bad", unit_price="abc")
    with pytest.raises(ValidationError):
        CatalogService.upsert(actor=admin_actor, code="X2", name="Negative", unit_price="-1")
    with pytest.raises(ValidationError):
        CatalogService.upsert(actor=admin_actor, code="X3", name=t1.name, unit_price="1")


@pytest.mark.django_db
def test_only_admin_writes(doctor_actor, t1):
    with pytest.raises(PermissionDenied):
        CatalogService.upsert(actor=doctor_actor, code="X", name="X", unit_price="1")
    with pytest.raises(PermissionDenied):
        CatalogService.deactivate(actor=doctor_actor, test_id=t1.id)


@pytest.mark.django_db
def test_lookup_and_filters(t1, t2):
    assert lookup(test_id=t1.id) == t1
    with pytest.raises(NotFound):
        lookup(test_id="00000000-0000-0000-0000-000000000000")

    assert list(list_tests(category="HEMATOLOGY")) == [t1]
    assert list(list_tests(q="liver")) == [t2]


@pytest.mark.django_db
def test_deactivated_test_is_not_orderable(admin_actor, t1, t2):
    CatalogService.deactivate(actor=admin_actor, test_id=t1.id)
    t1.refresh_from_db()
    assert t1.is_active is False

    assert list(list_tests(active=True)) == [t2]
    with pytest.raises(ValidationError):
        active_tests_by_id([t1.id, t2.id])
    assert set(active_tests_by_id([t2.id])) == {t2.id}


@pytest.mark.django_db
def test_catalog_api_read_for_all_write_for_admin(client_for, patient_user, admin_user, t1):
    res = client_for(patient_user).get(BASE)
    assert res.status_code == 200
    assert [row["code"] for row in res.json()["results"]] == ["CBC"]

    payload = {"code": "esr", "name": "Erythrocyte Sedimentation Rate", "unit_price": "8.00"}
    assert client_for(patient_user).post(BASE, payload, format="json").status_code == 403

    res = client_for(admin_user).post(BASE, payload, format="json")
    assert res.status_code == 201
    assert res.json()["code"] == "ESR"

    res = client_for(admin_user).patch(f"{BASE}{t1.id}/", {"unit_price": "22.00"}, format="json")
    assert res.status_code == 200
    assert res.json()["unit_price"] == "22.00"
    assert res.json()["code"] == "CBC"

    res = client_for(admin_user).post(f"{BASE}{t1.id}/deactivate/")
    assert res.status_code == 200
    assert res.json()["is_active"] is False
