import os


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


wsgi_app = "app:create_app()"

bind = f"0.0.0.0:{_env_int('PORT', 5002)}"

# Each worker holds its own DB pool (DB_POOL_SIZE + DB_MAX_OVERFLOW); keep the product under the server limit.
workers = max(1, _env_int("WEB_CONCURRENCY", 2))
threads = max(1, _env_int("PYTHON_THREADS", 4))

# Uploads to the Apps Script backend can take a while; GAS_UPLOAD_TIMEOUT_SECONDS must stay below this.
timeout = max(10, _env_int("GUNICORN_TIMEOUT", 120))
graceful_timeout = max(5, _env_int("GUNICORN_GRACEFUL_TIMEOUT", 30))
keepalive = max(1, _env_int("GUNICORN_KEEPALIVE", 5))

# The app writes its own JSON access line (logger "app.request").
accesslog = None
errorlog = "-"

max_requests = max(0, _env_int("GUNICORN_MAX_REQUESTS", 1000))
max_requests_jitter = max(0, _env_int("GUNICORN_MAX_REQUESTS_JITTER", 100))
