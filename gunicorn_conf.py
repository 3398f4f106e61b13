"""
Gunicorn Configuration for the Pocket Bounty API
Uvicorn workers serving api_server:app

    gunicorn -c gunicorn_conf.py api_server:app
"""
import os

# Server socket
bind = f"0.0.0.0:{os.getenv('PORT', '5000')}"
backlog = 2048

# Worker processes
# WebSocket registry and rate limits live in process memory, so one worker
# per instance unless they are moved to a shared store
workers = int(os.getenv("WEB_CONCURRENCY", "1"))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
timeout = 120
graceful_timeout = 30
keepalive = 30

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

proc_name = "pocket_bounty_api"

daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None

# Each worker builds its own engine and scheduler after fork
preload_app = False


def when_ready(server):
    """Called just after the server is started."""
    server.log.info(f"✅ Gunicorn ready with {workers} uvicorn workers on {bind}")


def post_fork(server, worker):
    """Called just after a worker has been forked."""
    server.log.info(f"🔧 Worker {worker.pid} started")


def worker_abort(worker):
    """Called when a worker receives the SIGABRT signal."""
    worker.log.warning(f"❌ Worker {worker.pid} aborted")


def worker_exit(server, worker):
    """Called just after a worker has been exited."""
    server.log.info(f"👋 Worker {worker.pid} exited")
