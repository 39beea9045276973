# config/settings/test.py
from .base import *  # noqa

DEBUG = False
SECRET_KEY = "test-secret-key-with-enough-length-for-hs256-signing"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

COMMON_IDEMPOTENCY_USE_DB = False
EMR_AUDIT_SINK = "emr_core.audit.sinks.DatabaseAuditSink"

# caplog listens on the root logger
LOGGING["loggers"]["emr_core"]["propagate"] = True  # noqa: F405
