"""
Gunicorn configuration for the tabulation API.

    gunicorn tabulator.main:app -c deploy/gunicorn.conf.py

Per-event write locks live in the worker process, so a single worker is the
default. More workers need BROADCAST_BACKEND=redis and a database that
honors row locks.
"""
import os

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = int(os.environ.get("WEB_CONCURRENCY", "1"))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 120
keepalive = 5

# Drafts still pending in the debouncer are written during shutdown
graceful_timeout = 30

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "tabulator"

daemon = False

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def when_ready(server):
    server.log.info("Tabulation API ready with %s worker(s)", workers)


def worker_exit(server, worker):
    server.log.info("Worker %s exited", worker.pid)
