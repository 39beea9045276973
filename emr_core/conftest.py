# emr_core/conftest.py
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from emr_core.audit.sinks import InMemoryAuditSink
from emr_core.catalog.models import CatalogTest
from emr_core.common import idempotency
from emr_core.common.permissions import Role
from emr_core.iam.actors import actor_from_user
from emr_core.iam.models import UserProfile
from emr_core.patients.models import Patient


def make_user(username: str, role: str, *, password: str = "testpass", is_active: bool = True):
    """
    auth_user + UserProfile carrying exactly one role.
    """
    User = get_user_model()
    user = User.objects.create_user(username=username, password=password, is_active=True)
    UserProfile.objects.create(user=user, role=role, is_active=is_active)
    return user


@pytest.fixture(autouse=True)
def _reset_process_state():
    idempotency.clear()
    InMemoryAuditSink.clear()
    yield
    idempotency.clear()
    InMemoryAuditSink.clear()


@pytest.fixture
def admin_user(db):
    return make_user("admin", Role.ADMIN)


@pytest.fixture
def doctor(db):
    return make_user("dr-a", Role.DOCTOR)


@pytest.fixture
def other_doctor(db):
    return make_user("dr-b", Role.DOCTOR)


@pytest.fixture
def lab_assistant(db):
    return make_user("lab-1", Role.LAB_ASSISTANT)


@pytest.fixture
def receptionist(db):
    return make_user("front-desk", Role.RECEPTIONIST)


@pytest.fixture
def patient_user(db):
    return make_user("pt-portal", Role.PATIENT)


@pytest.fixture
def patient(db, patient_user):
    return Patient.objects.create(
        full_name="Test Patient",
        mrn="MRN-TEST-001",
        user=patient_user,
    )


@pytest.fixture
def other_patient(db):
    return Patient.objects.create(full_name="Other Patient", mrn="MRN-TEST-002")


@pytest.fixture
def t1(db):
    return CatalogTest.objects.create(code="CBC", name="Complete Blood Count", category="hematology",
                                      unit_price=Decimal("20.00"))


@pytest.fixture
def t2(db):
    return CatalogTest.objects.create(code="LFT", name="Liver Function Test", category="biochemistry",
                                      unit_price=Decimal("15.00"))


@pytest.fixture
def admin_actor(admin_user):
    return actor_from_user(admin_user)


@pytest.fixture
def doctor_actor(doctor):
    return actor_from_user(doctor)


@pytest.fixture
def other_doctor_actor(other_doctor):
    return actor_from_user(other_doctor)


@pytest.fixture
def lab_actor(lab_assistant):
    return actor_from_user(lab_assistant)


@pytest.fixture
def receptionist_actor(receptionist):
    return actor_from_user(receptionist)


@pytest.fixture
def patient_actor(patient_user):
    return actor_from_user(patient_user)


@pytest.fixture
def client_for():
    """
    client_for(user) -> APIClient authenticated as that user.
    """
    def _make(user):
        c = APIClient()
        c.force_authenticate(user=user)
        return c
    return _make


@pytest.fixture
def lab_order(doctor_actor, patient, t1, t2):
    """
    Scenario order: CBC x2 @20 + LFT x1 @15 = 55.
    """
    from emr_core.orders.services import LabOrderService

    return LabOrderService.create_order(
        actor=doctor_actor,
        patient_id=patient.id,
        tests=[{"test_id": t1.id, "quantity": 2}, {"test_id": t2.id, "quantity": 1}],
    )
