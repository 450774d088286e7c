"""Gunicorn production configuration for the approval service."""
import multiprocessing

wsgi_app = "approval_service.main:app"
chdir = "backend"
bind = "0.0.0.0:8000"
workers = multiprocessing.cpu_count() * 2 + 1
worker_class = "uvicorn.workers.UvicornWorker"
# Sync endpoints run in the threadpool; keep the request timeout well above the storage timeout.
timeout = 60
keepalive = 5
max_requests = 1000
max_requests_jitter = 100
preload_app = True
accesslog = "-"
errorlog = "-"
loglevel = "info"
