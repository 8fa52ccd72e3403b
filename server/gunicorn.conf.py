"""Gunicorn settings for the forms service, read from the same env vars as core/config.py.

Usage:
    gunicorn main:app -c gunicorn.conf.py

The in-memory cache lives inside each worker, so WORKERS defaults to 1 unless
CACHE_BACKEND=redis, in which case it defaults to one worker per CPU.
"""
import multiprocessing
import os


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    return int(value) if value else default


cache_backend = os.getenv("CACHE_BACKEND", "memory").lower()
debug = os.getenv("DEBUG", "false").lower() == "true"

bind = f"{os.getenv('HOST', '0.0.0.0')}:{os.getenv('PORT', '8000')}"

worker_class = "uvicorn.workers.UvicornWorker"
workers = _env_int("WORKERS", 0) or (multiprocessing.cpu_count() if cache_backend == "redis" else 1)

# Form lookups are a file read or one CRM round trip
timeout = _env_int("GUNICORN_TIMEOUT", 30)
graceful_timeout = _env_int("GUNICORN_GRACEFUL_TIMEOUT", 10)
keepalive = _env_int("GUNICORN_KEEPALIVE", 5)

# Request logging comes from the app's structlog events
accesslog = None
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "INFO").lower()

proc_name = "marketing-forms"
preload_app = not debug


def when_ready(server):
    if workers > 1 and cache_backend != "redis":
        server.log.warning(
            "%d workers with CACHE_BACKEND=memory each keep their own form cache", workers
        )
