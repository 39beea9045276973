# emr_core/catalog/services.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from uuid import UUID

from django.db import transaction
from rest_framework.exceptions import NotFound, ValidationError

from emr_core.audit.models import AuditAction
from emr_core.audit.services import AuditRecorder
from emr_core.catalog.models import CatalogTest
from emr_core.catalog.selectors import lookup
from emr_core.common.effects import post_commit
from emr_core.common.permissions import Action, Resource, require

ENTITY = "catalogTest"


def to_money(value, field_name: str) -> Decimal:
    """
    Accepts Decimal / str / int / float and converts to a 2dp Decimal.
    Raises ValidationError for invalid values.
    """
    if isinstance(value, Decimal):
        return value.quantize(Decimal("0.01"))
    try:
        # str() handles int/float/str uniformly
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError({field_name: "Invalid decimal value."})


class CatalogService:
    @staticmethod
    def upsert(
        *,
        actor,
        code: str,
        name: str,
        unit_price,
        category: str = "",
        description: str = "",
        is_active: bool = True,
    ) -> CatalogTest:
        """
        Create or update a catalog test keyed on its (upper-cased) code.
        """
        require(actor, Resource.CATALOG, Action.CREATE)

        code = (code or "").strip().upper()
        name = (name or "").strip()
        if not code:
            raise ValidationError({"code": "This field is required."})
        if not name:
            raise ValidationError({"name": "This field is required."})

        unit_price = to_money(unit_price, "unit_price")
        if unit_price < Decimal("0.00"):
            raise ValidationError({"unit_price": "Must be >= 0"})

        if CatalogTest.objects.filter(name=name).exclude(code=code).exists():
            raise ValidationError({"name": "Another test already uses this name."})

        with post_commit() as effects:
            obj, created = CatalogTest.objects.update_or_create(
                code=code,
                defaults={
                    "name": name,
                    "unit_price": unit_price,
                    "category": category or "",
                    "description": description or "",
                    "is_active": is_active,
                },
            )
            effects.add(
                "audit.catalog.upsert",
                AuditRecorder.deferred(
                    actor=actor,
                    action=AuditAction.CREATE if created else AuditAction.UPDATE,
                    entity=ENTITY,
                    entity_id=obj.id,
                    changes={"code": code, "unitPrice": str(unit_price), "isActive": is_active},
                ),
            )
        return obj

    @staticmethod
    def update(*, actor, test_id: UUID, **fields) -> CatalogTest:
        """
        Partial update by id. `code` is immutable once created.
        """
        require(actor, Resource.CATALOG, Action.UPDATE)
        current = lookup(test_id=test_id)

        return CatalogService.upsert(
            actor=actor,
            code=current.code,
            name=fields.get("name", current.name),
            unit_price=fields.get("unit_price", current.unit_price),
            category=fields.get("category", current.category),
            description=fields.get("description", current.description),
            is_active=fields.get("is_active", current.is_active),
        )

    @staticmethod
    def deactivate(*, actor, test_id: UUID) -> CatalogTest:
        """
        Excludes the test from future orders; existing orders keep their snapshot.
        """
        require(actor, Resource.CATALOG, Action.UPDATE)

        with post_commit() as effects:
            try:
                obj = CatalogTest.objects.select_for_update().get(id=test_id)
            except CatalogTest.DoesNotExist:
                raise NotFound(f"Catalog test {test_id} not found.")
            if obj.is_active:
                obj.is_active = False
                obj.save(update_fields=["is_active", "updated_at"])
                effects.add(
                    "audit.catalog.deactivate",
                    AuditRecorder.deferred(
                        actor=actor,
                        action=AuditAction.UPDATE,
                        entity=ENTITY,
                        entity_id=obj.id,
                        changes={"isActive": False},
                    ),
                )
        return obj
