"""Logging filter adding request correlation to every record."""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Set ``record.request_id`` from the current request, "-" outside one.

    Installed on the handlers in ``settings.LOGGING`` so the JSON formatter
    can always emit the field.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
