# emr_core/common/effects.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from django.db import transaction

logger = logging.getLogger(__name__)


class Effects:
    """
    Ordered list of side effects (audit writes, notifications) collected while a
    write operation runs, attempted only after its transaction block exits.

    Each effect runs in its own savepoint. A failing effect is logged and
    skipped; the remaining effects still run and the caller never sees the error.
    """

    def __init__(self) -> None:
        self._items: list[tuple[str, Callable[[], object]]] = []

    def add(self, label: str, fn: Callable[[], object]) -> None:
        self._items.append((label, fn))

    def __len__(self) -> int:
        return len(self._items)

    def run(self) -> None:
        items, self._items = self._items, []
        for label, fn in items:
            try:
                with transaction.atomic():
                    fn()
            except Exception:
                logger.exception("Post-commit effect failed: %s", label)


@contextmanager
def post_commit() -> Iterator[Effects]:
    """
    Usage:

        with post_commit() as effects:
            ...primary writes...
            effects.add("audit", lambda: ...)

    The primary writes happen inside transaction.atomic(). If the block raises,
    everything rolls back and no effect runs.
    """
    effects = Effects()
    with transaction.atomic():
        yield effects
    effects.run()
