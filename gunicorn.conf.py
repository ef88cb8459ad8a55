"""Gunicorn configuration.

Threaded workers: each login callback blocks on at most two bounded
directory calls, so threads keep other requests moving meanwhile.

Run with:
    gunicorn -c gunicorn.conf.py sso_gateway.flask_app:app
"""
import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:5000")
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
worker_class = "gthread"
threads = int(os.environ.get("GUNICORN_THREADS", "8"))
# Must exceed the directory timeout (two calls per login plus one retry)
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "30"))
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info")


def post_fork(server, worker):
    """
    Called just after a worker has been forked.

    The in-memory user store is per process; warn when several workers
    would each hold their own copy.
    """
    if os.environ.get("DEMO_MODE", "false").lower() == "true" and workers > 1:
        worker.log.warning(
            "DEMO_MODE with %d workers: each worker has its own in-memory user store", workers
        )
