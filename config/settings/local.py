# config/settings/local.py
from .base import *  # noqa

DEBUG = os.getenv("DJANGO_DEBUG", "1") == "1"  # noqa: F405

COMMON_IDEMPOTENCY_USE_DB = False
