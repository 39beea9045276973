# emr_core/api/urls.py
from __future__ import annotations

from django.urls import path
from rest_framework.routers import DefaultRouter

from emr_core.audit.api.views import AuditEventViewSet
from emr_core.billing.api.views import BillingViewSet, PaymentViewSet
from emr_core.catalog.api.views import CatalogTestViewSet
from emr_core.iam.api.auth import LoginView, LogoutView, RefreshView
from emr_core.iam.api.me import MeView
from emr_core.notifications.api.views import NotificationViewSet
from emr_core.orders.api.views import LabOrderViewSet

router = DefaultRouter()

router.register(r"lab-orders", LabOrderViewSet, basename="lab-orders")
router.register(r"catalog/tests", CatalogTestViewSet, basename="catalog-tests")
router.register(r"billing/billings", BillingViewSet, basename="billing-billings")
router.register(r"billing/payments", PaymentViewSet, basename="billing-payments")
router.register(r"audit/events", AuditEventViewSet, basename="audit-events")
router.register(r"notifications", NotificationViewSet, basename="notifications")

urlpatterns = [
    # Auth + /me
    path("auth/login/", LoginView.as_view(), name="login"),
    path("auth/refresh/", RefreshView.as_view(), name="refresh"),
    path("auth/logout/", LogoutView.as_view(), name="logout"),
    path("me/", MeView.as_view(), name="me"),

    # Router URLs last (so explicit paths win if ever overlapping)
    *router.urls,
]
