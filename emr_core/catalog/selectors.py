# emr_core/catalog/selectors.py
from __future__ import annotations

from typing import Iterable
from uuid import UUID

from django.db.models import Q, QuerySet
from rest_framework.exceptions import NotFound, ValidationError

from emr_core.catalog.models import CatalogTest


def lookup(*, test_id: UUID) -> CatalogTest:
    try:
        return CatalogTest.objects.get(id=test_id)
    except CatalogTest.DoesNotExist:
        raise NotFound(f"Catalog test {test_id} not found.")


def list_tests(
    *,
    category: str | None = None,
    active: bool | None = None,
    q: str | None = None,
) -> QuerySet[CatalogTest]:
    qs = CatalogTest.objects.all()

    if category:
        qs = qs.filter(category__iexact=category)
    if active is not None:
        qs = qs.filter(is_active=active)

    qv = (q or "").strip()
    if qv:
        qs = qs.filter(Q(name__icontains=qv) | Q(code__icontains=qv))

    return qs.order_by("code")


def active_tests_by_id(test_ids: Iterable[UUID]) -> dict[UUID, CatalogTest]:
    """
    Resolve every id to an orderable test, read in one query.

    - unknown id -> NotFound
    - inactive test -> ValidationError
    """
    try:
        wanted = {UUID(str(t)) for t in test_ids}
    except ValueError:
        raise ValidationError({"tests": "Invalid test id (UUID expected)."})
    found = {t.id: t for t in CatalogTest.objects.filter(id__in=wanted)}

    missing = wanted - set(found)
    if missing:
        raise NotFound({"detail": "Catalog test not found.", "tests": sorted(str(m) for m in missing)})

    inactive = sorted(t.code for t in found.values() if not t.is_active)
    if inactive:
        raise ValidationError({"tests": f"Inactive catalog tests cannot be ordered: {', '.join(inactive)}"})

    return found
