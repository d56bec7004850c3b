"""Request correlation and request-size guard for the API.

``RequestIdMiddleware`` reuses the caller's ``X-Request-ID`` or mints a
UUIDv4, keeps it on ``request.request_id`` and in ``REQUEST_ID_CTX`` (read
by the logging filter and by outbound HTTP clients) and echoes it on the
response.

``ApiSizeLimitMiddleware`` answers 413 for ``/api/`` requests whose
declared body exceeds ``settings.API_MAX_BYTES``. Payment proofs travel
as URLs plus metadata, so checkout and order bodies stay small.
"""

import contextvars
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


class RequestIdMiddleware(MiddlewareMixin):
    HEADER = "HTTP_X_REQUEST_ID"       # as found in request.META
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            REQUEST_ID_CTX.reset(token)
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
        if clen and clen.isdigit() and int(clen) > limit:
            return JsonResponse(
                {"detail": "PAYLOAD_TOO_LARGE", "message": f"Request body exceeds {limit} bytes"},
                status=413,
            )
        return None
