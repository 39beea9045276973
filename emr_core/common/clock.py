from __future__ import annotations

from datetime import datetime

from django.utils import timezone


def now() -> datetime:
    """
    Single time source for services (due dates, payment dates, audit timestamps).
    Tests monkeypatch this instead of freezing the whole interpreter clock.
    """
    return timezone.now()
