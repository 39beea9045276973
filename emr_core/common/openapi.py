# emr_core/common/openapi.py
from __future__ import annotations

from drf_spectacular.openapi import AutoSchema
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter


class EMRAutoSchema(AutoSchema):
    """
    Adds the optional Idempotency-Key header to write endpoints that honour it.
    Views opt in with `idempotent_actions = {"create", "payment"}`.
    """

    IDEMPOTENCY_HEADER = OpenApiParameter(
        name="Idempotency-Key",
        type=OpenApiTypes.STR,
        location=OpenApiParameter.HEADER,
        required=False,
        description="Retrying a request with the same key returns the first response.",
    )

    def get_override_parameters(self):
        params = list(super().get_override_parameters() or [])

        view = getattr(self, "view", None)
        action = getattr(view, "action", None)
        idempotent = getattr(view, "idempotent_actions", set())

        if action in idempotent and not any(p.name.lower() == "idempotency-key" for p in params):
            params.append(self.IDEMPOTENCY_HEADER)
        return params
