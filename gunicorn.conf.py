"""
Gunicorn configuration for the NudgeGate API.

Run with:  gunicorn -c gunicorn.conf.py nudgegate.main:app

Env vars that override defaults:
  PORT       - TCP port to bind (default: 8000)
  WORKERS    - number of worker processes (default: 2)
  LOG_LEVEL  - gunicorn log level (default: info)
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Governance decisions are short DB-bound requests; 2 workers fit a 512 MB container.
workers = int(os.environ.get("WORKERS", "2"))

# Each worker runs Uvicorn's ASGI event loop inside Gunicorn's process manager.
worker_class = "uvicorn.workers.UvicornWorker"

wsgi_app = "nudgegate.main:app"

keepalive = 5

# Kill a worker that hasn't responded in 60 s.
timeout = 60

# stdout only; application logs go through the same stream.
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sµs'

graceful_timeout = 30
