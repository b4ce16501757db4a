from datetime import datetime, timezone

from cardflow.core import config


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_meta() -> dict:  # server-authored metadata with an ISO-8601 UTC timestamp
    ts = utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return {
        "version": config.API_VERSION,
        "timestamp": ts,
    }


def error_detail(code: str, message: str) -> dict:
    return {
        "error": {"code": code, "message": message},
        "meta": build_meta(),
    }
