# emr_core/common/middleware.py
from __future__ import annotations

import logging

from django.utils.deprecation import MiddlewareMixin

from emr_core.common.api.exceptions import ensure_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


class RequestIdMiddleware(MiddlewareMixin):
    """
    Attaches request.request_id (client supplied X-Request-Id wins) so error
    envelopes and log lines of one request share an id.
    """

    def process_request(self, request):
        incoming = request.headers.get(REQUEST_ID_HEADER)
        if incoming:
            request.request_id = incoming[:64]
        ensure_request_id(request)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", None)
        if rid:
            response[REQUEST_ID_HEADER] = rid
        if response.status_code >= 500:
            logger.error("%s %s -> %s (request_id=%s)", request.method, request.path, response.status_code, rid)
        return response
