import os


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _default_workers() -> int:
    return min(max(2, (os.cpu_count() or 1) * 2), 8)


wsgi_app = "config.wsgi:application"
bind = os.getenv("GUNI_BIND", "0.0.0.0:8000")

# Checkout work is short and DB-bound: a few processes with threads each
worker_class = "gthread"
workers = _int_env("GUNI_WORKERS", _default_workers())
threads = _int_env("GTHREADS", 4)

# CHECKOUT_SESSION_BACKEND=memory is per process; run a single worker with it
if os.getenv("CHECKOUT_SESSION_BACKEND", "db") == "memory":
    workers = 1

timeout = _int_env("GUNI_TIMEOUT", 30)
graceful_timeout = _int_env("GUNI_GRACEFUL_TIMEOUT", 30)
keepalive = _int_env("GUNI_KEEPALIVE", 5)

preload_app = True
max_requests = _int_env("GUNI_MAX_REQUESTS", 2000)
max_requests_jitter = _int_env("GUNI_MAX_REQUESTS_JITTER", 200)

# Application logs are JSON via settings.LOGGING; gunicorn's own go to stdout/stderr
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNI_LOGLEVEL", "info")
