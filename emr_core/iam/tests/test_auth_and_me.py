# emr_core/iam/tests/test_auth_and_me.py
import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from emr_core.common.api.exceptions import Unauthenticated
from emr_core.common.permissions import Role
from emr_core.conftest import make_user
from emr_core.iam.actors import Actor, authenticate
from emr_core.iam.models import UserProfile


@pytest.mark.django_db
def test_me_requires_auth():
    res = APIClient().get("/api/v1/me/")
    assert res.status_code == 401
    assert res.json()["error"]["code"] == "not_authenticated"


@pytest.mark.django_db
def test_login_sets_cookies_and_cookie_authenticates(doctor, settings):
    c = APIClient()
    res = c.post("/api/v1/auth/login/", {"username": "dr-a", "password": "testpass"}, format="json")
    assert res.status_code == 200

    access_cookie = settings.SIMPLE_JWT["AUTH_COOKIE"]
    refresh_cookie = settings.SIMPLE_JWT["AUTH_COOKIE_REFRESH"]
    assert access_cookie in res.cookies
    assert refresh_cookie in res.cookies

    # APIClient keeps cookies; CookieOrHeaderJWTAuthentication reads the access cookie
    me = c.get("/api/v1/me/")
    assert me.status_code == 200
    assert me.json()["role"] == Role.DOCTOR


@pytest.mark.django_db
def test_login_with_wrong_password_is_rejected(doctor):
    res = APIClient().post("/api/v1/auth/login/", {"username": "dr-a", "password": "nope"}, format="json")
    assert res.status_code in (401, 403)
    assert res.json()["error"]["code"] == "not_authenticated"


@pytest.mark.django_db
def test_me_returns_role_and_capabilities(client_for, receptionist):
    res = client_for(receptionist).get("/api/v1/me/")
    assert res.status_code == 200

    body = res.json()
    assert body["user"]["id"] == receptionist.id
    assert body["role"] == Role.RECEPTIONIST
    assert "lab_order.pay" in body["capabilities"]
    assert "lab_order.create" not in body["capabilities"]


@pytest.mark.django_db
def test_me_without_active_profile_is_403(client_for):
    user = make_user("inactive-doc", Role.DOCTOR, is_active=False)
    res = client_for(user).get("/api/v1/me/")
    assert res.status_code == 403


@pytest.mark.django_db
def test_bearer_header_authenticates(lab_assistant):
    c = APIClient()
    c.credentials(HTTP_AUTHORIZATION=f"Bearer {RefreshToken.for_user(lab_assistant).access_token}")

    res = c.get("/api/v1/me/")
    assert res.status_code == 200
    assert res.json()["role"] == Role.LAB_ASSISTANT


@pytest.mark.django_db
def test_authenticate_resolves_actor(doctor):
    token = str(RefreshToken.for_user(doctor).access_token)
    assert authenticate(token) == Actor(id=doctor.id, role=Role.DOCTOR)


@pytest.mark.django_db
@pytest.mark.parametrize("credential", [None, "", "not-a-jwt"])
def test_authenticate_rejects_bad_credentials(credential):
    with pytest.raises(Unauthenticated):
        authenticate(credential)


@pytest.mark.django_db
def test_authenticate_rejects_inactive_user(doctor):
    token = str(RefreshToken.for_user(doctor).access_token)
    doctor.is_active = False
    doctor.save(update_fields=["is_active"])

    with pytest.raises(Unauthenticated):
        authenticate(token)


@pytest.mark.django_db
def test_superuser_resolves_to_admin(client_for):
    from django.contrib.auth import get_user_model

    root = get_user_model().objects.create_superuser(username="root", password="x", email="root@example.com")
    assert not UserProfile.objects.filter(user=root).exists()

    res = client_for(root).get("/api/v1/me/")
    assert res.json()["role"] == Role.ADMIN
    assert res.json()["capabilities"] == ["*"]
