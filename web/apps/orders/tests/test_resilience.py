# Retry, circuit breaker and best-effort delivery of notifications
import httpx
import pytest

from apps.orders.http_adapters import CircuitBreaker, HttpNotificationSink, _notifications_cb
from apps.orders.notifications import notify_on_commit


def test_notify_retries_on_5xx(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 3
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    calls = {"n": 0, "retry_headers": []}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        calls["retry_headers"].append(headers["X-Retry-Count"])

        class R:
            status_code = 503 if calls["n"] == 1 else 200

        return R()

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)

    HttpNotificationSink(base_url="http://x").notify("payment.verified", {})
    assert calls["n"] == 2
    assert calls["retry_headers"] == ["0", "1"]


def test_circuit_opens_after_repeated_failures(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    monkeypatch.setattr(_notifications_cb, "fail_threshold", 2)

    def fake_post(self, url, json=None, headers=None, **kwargs):
        raise httpx.ConnectError("down")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    sink = HttpNotificationSink(base_url="http://x")
    for _ in range(2):
        with pytest.raises(httpx.ConnectError):
            sink.notify("order.created", {})
    assert _notifications_cb.state == "OPEN"
    with pytest.raises(RuntimeError, match="CIRCUIT_OPEN"):
        sink.notify("order.created", {})


def test_half_open_allows_single_trial_call(monkeypatch):
    now = {"t": 100.0}
    monkeypatch.setattr("apps.orders.http_adapters.time.monotonic", lambda: now["t"])
    cb = CircuitBreaker("t", fail_threshold=1, reset_timeout=10)
    cb.on_failure()
    assert cb.state == "OPEN"
    now["t"] += 10
    assert cb.before_call() == "HALF_OPEN"
    with pytest.raises(RuntimeError, match="CIRCUIT_HALF_OPEN_BUSY"):
        cb.before_call()
    cb.on_failure()
    assert cb.state == "OPEN"
    now["t"] += 10
    cb.before_call()
    cb.on_success()
    assert cb.state == "CLOSED"


@pytest.mark.django_db
def test_sink_failure_is_logged_not_raised(failing_sink, caplog, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        notify_on_commit(failing_sink, "order.created", {"order_id": "o1"})
    assert any(r.getMessage() == "notification failed" for r in caplog.records)


@pytest.mark.django_db
def test_health_reports_open_circuit(client, monkeypatch):
    monkeypatch.setattr(_notifications_cb, "fail_threshold", 1)
    _notifications_cb.on_failure()
    body = client.get("/api/health/").json()
    assert body["ok"] is True
    assert body["components"]["notifications"] == {"ok": False, "circuit": "OPEN"}


def test_retry_backoff_follows_settings(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 3
    settings.HTTP_RETRY_BACKOFF_BASE = 0.1
    settings.HTTP_RETRY_MAX_SLEEP = 0.15
    sleeps = []
    monkeypatch.setattr("apps.orders.http_adapters.time.sleep", sleeps.append)

    def fake_post(self, url, json=None, headers=None, **kwargs):
        raise httpx.ConnectError("down")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(httpx.ConnectError):
        HttpNotificationSink(base_url="http://x").notify("order.created", {})
    assert sleeps == [0.1, 0.15]
