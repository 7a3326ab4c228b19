"""Gunicorn configuration for the Ghost Admin API gateway.

Loaded by gateway.main() through its embedded Gunicorn application. Workers
share state only through the sqlite database, so any worker can receive any
chunk of an upload; main() pins a single worker when the in-memory chunk
store is configured.

Environment:
    GATEWAY_BIND      Listen address (default 0.0.0.0:5000)
    GATEWAY_WORKERS   Worker processes (default 2)
    GATEWAY_THREADS   Threads per worker (default 4)
"""

import os
import sys

from gateway.gateway import LOG_FORMAT

bind = os.environ.get("GATEWAY_BIND", "0.0.0.0:5000")

# Uploads are I/O bound; threads keep slow chunk uploads from blocking others
workers = int(os.environ.get("GATEWAY_WORKERS", "2"))
worker_class = "gthread"
threads = int(os.environ.get("GATEWAY_THREADS", "4"))
timeout = 60  # Large uploads on slow links
keepalive = 2

accesslog = "-"
errorlog = "-"
loglevel = "info"

# Request time (%(D)s, microseconds) is what matters for chunk uploads
access_log_format = '%(h)s %(t)s "%(r)s" %(s)s %(b)s "%(a)s" %(D)s'

capture_output = True

# Query strings carry domain/subdomain/blogSlug/userSlug
limit_request_line = 8190
limit_request_fields = 100
limit_request_field_size = 8190


def on_starting(server):
    server.log.info(f"Starting Ghost Admin API gateway on {bind}")


def when_ready(server):
    server.log.info(f"Gateway ready with {server.cfg.workers} worker(s) x {server.cfg.threads} thread(s)")


def worker_abort(worker):
    """Called when a worker is killed for exceeding the timeout."""
    worker.log.error(f"Worker {worker.pid} aborted, most likely a stalled upload")


def on_exit(server):
    server.log.info("Shutting down Ghost Admin API gateway")


def _stream_handler(stream):
    return {"class": "logging.StreamHandler", "formatter": "gateway", "stream": stream}


logconfig_dict = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {"gateway": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"}},
    "handlers": {"stdout": _stream_handler(sys.stdout), "stderr": _stream_handler(sys.stderr)},
    "root": {"level": "INFO", "handlers": ["stdout"]},
    "loggers": {
        "gunicorn.error": {"level": "INFO", "handlers": ["stderr"], "propagate": False},
        "gunicorn.access": {"level": "INFO", "handlers": ["stdout"], "propagate": False},
    },
}
