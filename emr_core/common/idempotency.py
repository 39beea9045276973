# emr_core/common/idempotency.py
from __future__ import annotations

import threading

from django.conf import settings
from django.db import IntegrityError, transaction

from emr_core.common.models import IdempotencyRecord

_LOCK = threading.Lock()
_STORE: dict[tuple[str, str, str, str], tuple[int, dict]] = {}


def _use_db() -> bool:
    """
    Default False so tests/dev stay in-process.
    Enable in production with:
        COMMON_IDEMPOTENCY_USE_DB = True
    """
    return bool(getattr(settings, "COMMON_IDEMPOTENCY_USE_DB", False))


def get_key(request) -> str | None:
    # DRF test client: "HTTP_IDEMPOTENCY_KEY" lands in request.META
    return request.META.get("HTTP_IDEMPOTENCY_KEY") or None


def _norm(user_id, method: str, path: str, key) -> tuple[str, str, str, str]:
    return (str(user_id), method.upper(), path, str(key))


def load_response(user_id, method: str, path: str, key) -> tuple[int, dict] | None:
    """
    Returns (status_code, response_data) of the first response stored for this
    key, or None.
    """
    if not key:
        return None

    if not _use_db():
        with _LOCK:
            return _STORE.get(_norm(user_id, method, path, key))

    rec = IdempotencyRecord.objects.filter(
        user_id=int(user_id),
        method=method.upper(),
        path=path,
        idempotency_key=str(key),
    ).first()
    return None if rec is None else (rec.status_code, rec.response_data)


def save_response(user_id, method: str, path: str, key, response_data, status_code: int = 200) -> None:
    if not key:
        return

    if not _use_db():
        with _LOCK:
            _STORE.setdefault(_norm(user_id, method, path, key), (int(status_code), response_data))
        return

    try:
        with transaction.atomic():
            IdempotencyRecord.objects.create(
                user_id=int(user_id),
                method=method.upper(),
                path=path,
                idempotency_key=str(key),
                status_code=int(status_code),
                response_data=response_data,
            )
    except IntegrityError:
        # first writer wins
        return


def clear() -> None:
    with _LOCK:
        _STORE.clear()
