"""
Production Server Configuration

Run the dashboard API with Uvicorn workers under Gunicorn.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", f"0.0.0.0:{os.getenv('PORT', '8787')}")
backlog = 2048

# Worker processes. Each worker keeps its own analytics cache.
workers = int(os.getenv("WORKERS", min(4, multiprocessing.cpu_count() * 2 + 1)))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
# The cells fan-out waits on several upstream calls
timeout = 120
keepalive = 5
graceful_timeout = 30

# Process naming
proc_name = "salesdash-api"

# Server mechanics
daemon = False
pidfile = "/tmp/salesdash-gunicorn.pid"

# Logging
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)s'


def when_ready(server):
    """Called when server is ready to receive connections."""
    server.log.info("salesdash API ready on %s", bind)
