"""
Gunicorn configuration file for Labo Planning production deployment.
"""

import multiprocessing
import os

# Server socket
bind = f"127.0.0.1:{os.environ.get('GUNICORN_PORT', '8000')}"
backlog = 2048

# Worker processes
workers = int(os.environ.get('GUNICORN_WORKERS', multiprocessing.cpu_count() * 2 + 1))
worker_class = "sync"
timeout = 30
graceful_timeout = 30
keepalive = 2

# Restart workers after this many requests
max_requests = 1000
max_requests_jitter = 100

preload_app = True

user = os.environ.get('GUNICORN_USER', 'www-data')
group = os.environ.get('GUNICORN_GROUP', 'www-data')

# Logging
accesslog = os.environ.get('GUNICORN_ACCESS_LOG', '/var/log/labo-planning/gunicorn-access.log')
errorlog = os.environ.get('GUNICORN_ERROR_LOG', '/var/log/labo-planning/gunicorn-error.log')
loglevel = os.environ.get('GUNICORN_LOG_LEVEL', 'info')
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

proc_name = 'labo-planning'

daemon = False
pidfile = os.environ.get('GUNICORN_PID_FILE', '/var/run/labo-planning/gunicorn.pid')
umask = 0o077

# Behind a reverse proxy the proxy keeps the access log
if os.environ.get('DISABLE_ACCESS_LOG', 'False').lower() == 'true':
    accesslog = None

if os.environ.get('DJANGO_DEBUG', 'False').lower() == 'true':
    reload = True
    loglevel = 'debug'
    workers = 1

raw_env = [f"DJANGO_SETTINGS_MODULE={os.environ.get('DJANGO_SETTINGS_MODULE', 'labo_planning.settings_production')}"]


def when_ready(server):
    """Called just after the server is started."""
    server.log.info("Labo Planning server is ready. Server: %s", server.address)


def worker_int(worker):
    worker.log.info("Worker killed: %s", worker.pid)


def post_fork(server, worker):
    server.log.info("Worker spawned (pid: %s)", worker.pid)
