# emr_core/audit/api/serializers.py
from rest_framework import serializers

from emr_core.audit.models import AuditEvent


class AuditEventSerializer(serializers.ModelSerializer):
    # API field name "timestamp", model field "occurred_at"
    timestamp = serializers.DateTimeField(source="occurred_at", read_only=True)

    class Meta:
        model = AuditEvent
        fields = [
            "id",
            "action",
            "entity",
            "entity_id",
            "actor_id",
            "actor_role",
            "outcome",
            "changes",
            "metadata",
            "timestamp",
        ]
        read_only_fields = fields
