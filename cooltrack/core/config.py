import os

DEFAULT_DATABASE_URL = "postgresql://postgres@localhost/cooltrack"


def env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def env_flag(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip() not in {"0", "false", "False", "no", "NO", ""}


def get_database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def get_env_name() -> str:
    return os.getenv("ENV", "dev").lower()


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def get_event_publisher_kind() -> str:
    """`outbox` stores events for the dispatcher, `log` only logs them."""
    return os.getenv("EVENT_PUBLISHER", "outbox").strip().lower()


def event_dispatch_enabled() -> bool:
    # Disabled under pytest so tests drive dispatch explicitly.
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    return env_flag("EVENT_DISPATCH_ENABLED", True)


def event_poll_seconds() -> float:
    return env_float("EVENT_POLL_SECONDS", 1.0)


def event_batch_size() -> int:
    return env_int("EVENT_BATCH_SIZE", 50)


def get_upload_dir() -> str:
    return os.getenv("UPLOAD_DIR", "uploads")


def get_upload_base_url() -> str:
    return os.getenv("UPLOAD_BASE_URL", "/uploads")
