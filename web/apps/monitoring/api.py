from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.http_adapters import CLOSED, notifications_circuit_state


def _database_reachable() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
    except DatabaseError:
        return False
    return True


def health_view(_request):
    db_ok = _database_reachable()
    circuit = notifications_circuit_state()
    # notifications are best effort: an open circuit shows up here but does not fail the health check
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                "notifications": {"ok": circuit == CLOSED, "circuit": circuit},
            },
        },
        status=200 if db_ok else 503,
    )
