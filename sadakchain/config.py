import os

from .errors import ConfigError


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def backend_name() -> str:
    return os.getenv("SADAK_BACKEND", "local").lower()


def database_url() -> str:
    return os.getenv("DATABASE_URL", "sqlite:///./sadakchain.db")


def supabase_config():
    return {
        "url": os.getenv("SUPABASE_URL", "").rstrip("/"),
        "anon_key": os.getenv("SUPABASE_ANON_KEY", ""),
        "service_role_key": os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
        "timeout": float(os.getenv("HTTP_TIMEOUT_SEC", "15")),
    }


def require_admin_config():
    cfg = supabase_config()
    if not cfg["url"] or not cfg["service_role_key"]:
        raise ConfigError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY")
    return cfg


def search_config():
    return {
        "geoapify_key": os.getenv("GEOAPIFY_API_KEY", ""),
        "geoapify_url": os.getenv("GEOAPIFY_URL", "https://api.geoapify.com").rstrip("/"),
        "nominatim_url": os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org").rstrip("/"),
        "user_agent": os.getenv("NOMINATIM_USER_AGENT", "sadakchain/0.1"),
        "country": os.getenv("SEARCH_COUNTRY", "in"),
        "limit": int(os.getenv("SEARCH_LIMIT", "10")),
        "debounce": int(os.getenv("SEARCH_DEBOUNCE_MS", "500")) / 1000.0,
        "min_chars": int(os.getenv("SEARCH_MIN_CHARS", "3")),
        "timeout": float(os.getenv("HTTP_TIMEOUT_SEC", "15")),
    }


def fallback_pincode() -> str:
    return os.getenv("FALLBACK_PINCODE", "400001")


def storage_config():
    return {
        "bucket": os.getenv("MEDIA_BUCKET", "reports_media"),
        "upload_dir": os.getenv("UPLOAD_DIR", "uploads"),
        "public_base_url": os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
    }


def token_config():
    return {
        "secret": os.getenv("SECRET_KEY", "change_this"),
        "algorithm": os.getenv("ALGORITHM", "HS256"),
        "minutes": int(os.getenv("ACCESS_TOKEN_MINUTES", "60")),
    }


def session_https_only() -> bool:
    return _flag("SESSION_HTTPS_ONLY")


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def admin_port() -> int:
    return int(os.getenv("ADMIN_PORT", "8787"))


def max_tracked_clients() -> int:
    return int(os.getenv("MAX_TRACKED_CLIENTS", "1000"))


def session_refresh_leeway() -> int:
    """Seconds before expiry at which a stored session is refreshed."""
    return int(os.getenv("SESSION_REFRESH_LEEWAY_SEC", "60"))
