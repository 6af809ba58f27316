import os


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


# Catalog database (users, branches, branch_kasas)
CORE_DB_HOST = os.getenv("CORE_DB_HOST", "localhost")
CORE_DB_PORT = _int_env("CORE_DB_PORT", 5432)
CORE_DB_USER = os.getenv("CORE_DB_USER", "postgres")
CORE_DB_PASSWORD = os.getenv("CORE_DB_PASSWORD", "postgres")
CORE_DB_NAME = os.getenv("CORE_DB_NAME", "micrapor_users")

JWT_SECRET = os.getenv("JWT_SECRET", "changeme")
ADMIN_EMAILS = [e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()]

# Branch POS databases
BRANCH_POOL_SIZE = _int_env("BRANCH_POOL_SIZE", 5)
BRANCH_POOL_MAX_OVERFLOW = _int_env("BRANCH_POOL_MAX_OVERFLOW", 5)
BRANCH_POOL_TIMEOUT = _int_env("BRANCH_POOL_TIMEOUT", 30)
BRANCH_POOL_RECYCLE = _int_env("BRANCH_POOL_RECYCLE", 1200)
BRANCH_CONNECT_TIMEOUT = _int_env("BRANCH_CONNECT_TIMEOUT", 8)
# Seconds; applied as the Postgres statement_timeout of every branch session
BRANCH_STATEMENT_TIMEOUT = _int_env("BRANCH_STATEMENT_TIMEOUT", 45)
BRANCH_MAX_CACHED_ENGINES = _int_env("BRANCH_MAX_CACHED_ENGINES", 50)

SLOW_QUERY_THRESHOLD = _float_env("SLOW_QUERY_THRESHOLD", 2.0)

# IANA zone used for "today"; empty means the server's local date
REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "")

DASHBOARD_STREAM_INTERVAL = _float_env("DASHBOARD_STREAM_INTERVAL", 5.0)
DASHBOARD_WORKERS = _int_env("DASHBOARD_WORKERS", 6)
CACHE_PURGE_INTERVAL = _int_env("CACHE_PURGE_INTERVAL", 300)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
