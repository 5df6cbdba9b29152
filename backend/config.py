# config.py
import math
import os
from datetime import timedelta
from typing import Mapping, Optional
from urllib.parse import urlparse

REQUIRED_KEYS = (
    "OPENAI_API_KEY",
    "STRIPE_SECRET_KEY",
    "STANDARD_PRICE_ID",
    "PREMIUM_PRICE_ID",
    "APP_BASE_URL",
    "APP_SECRET",
)
MIN_SECRET_LEN = 32


def _csv_env(env: Mapping[str, str], name: str, default: str = "") -> list[str]:
    val = env.get(name, default)
    # split only if non-empty; strip whitespace
    return [x.strip() for x in val.split(",") if x.strip()] if val else []


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def _bool_env(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


class BaseConfig:
    DEBUG = False
    TESTING = False
    JSON_SORT_KEYS = False
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # 1 MB
    PREFERRED_URL_SCHEME = "https"
    FORCE_HTTPS = False

    # Entitlement cookie (flask-jwt-extended)
    JWT_TOKEN_LOCATION = ["cookies"]
    JWT_ACCESS_COOKIE_NAME = "ap_premium"
    JWT_COOKIE_CSRF_PROTECT = False
    JWT_COOKIE_SAMESITE = "Lax"
    JWT_SESSION_COOKIE = False


class DevConfig(BaseConfig):
    DEBUG = True


class ProdConfig(BaseConfig):
    FORCE_HTTPS = True


def config_object(env: Optional[Mapping[str, str]] = None):
    env = os.environ if env is None else env
    return ProdConfig if env.get("ENV") == "prod" else DevConfig


def validate_required_secrets(env: Optional[Mapping[str, str]] = None) -> None:
    """Refuse to start when a required key is missing or malformed."""
    env = os.environ if env is None else env
    problems = [k for k in REQUIRED_KEYS if not (env.get(k) or "").strip()]

    base_url = env.get("APP_BASE_URL") or ""
    if base_url:
        parsed = urlparse(base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            problems.append("APP_BASE_URL (must be an http(s) URL)")

    secret = env.get("APP_SECRET") or ""
    if secret and len(secret) < MIN_SECRET_LEN:
        problems.append(f"APP_SECRET (must be >= {MIN_SECRET_LEN} chars)")

    if problems:
        raise RuntimeError("Invalid environment: " + ", ".join(problems))


def env_config(env: Optional[Mapping[str, str]] = None) -> dict:
    """Map environment variables onto Flask config keys."""
    env = os.environ if env is None else env
    base_url = (env.get("APP_BASE_URL") or "").rstrip("/")
    model = env.get("OPENAI_MODEL") or "gpt-4o-mini"
    premium_days = _int_env(env, "PREMIUM_DAYS", 30)
    cookie_secure = _bool_env(env, "COOKIE_SECURE", True)

    window_ms = _int_env(env, "RATE_LIMIT_WINDOW_MS", 60000)
    rate_max = _int_env(env, "RATE_LIMIT_MAX", 10)
    if window_ms <= 0:
        raise RuntimeError(f"RATE_LIMIT_WINDOW_MS must be positive, got {window_ms}")
    # flask-limiter windows are whole seconds; round partial seconds up
    window_s = math.ceil(window_ms / 1000)

    return {
        "ENV_NAME": env.get("ENV") or "dev",
        "PORT": _int_env(env, "PORT", 3000),
        "APP_BASE_URL": base_url,
        "SENTRY_DSN": env.get("SENTRY_DSN") or None,

        # LLM
        "OPENAI_API_KEY": env.get("OPENAI_API_KEY", ""),
        "OPENAI_BASE_URL": env.get("OPENAI_BASE_URL") or None,
        "OPENAI_MODEL": model,
        "OPENAI_PREMIUM_MODEL": env.get("OPENAI_PREMIUM_MODEL") or model,
        "LLM_TIMEOUT_SECONDS": _int_env(env, "LLM_TIMEOUT_SECONDS", 30),

        # Stripe
        "STRIPE_SECRET_KEY": env.get("STRIPE_SECRET_KEY", ""),
        "STRIPE_PUBLISHABLE_KEY": env.get("STRIPE_PUBLISHABLE_KEY") or None,
        "STRIPE_WEBHOOK_SECRET": env.get("STRIPE_WEBHOOK_SECRET") or None,
        "STANDARD_PRICE_ID": env.get("STANDARD_PRICE_ID", ""),
        "PREMIUM_PRICE_ID": env.get("PREMIUM_PRICE_ID", ""),
        "PROMOTION_CODE_ID": env.get("PROMOTION_CODE_ID") or None,

        # Free tier / abuse
        "FREE_DAILY_LIMIT": _int_env(env, "FREE_DAILY_LIMIT", 5),
        "FREE_CAPTCHA_AFTER": _int_env(env, "FREE_CAPTCHA_AFTER", 3),
        "STANDARD_MAX_VARIANTS": _int_env(env, "STANDARD_MAX_VARIANTS", 3),
        "PREMIUM_MAX_VARIANTS": _int_env(env, "PREMIUM_MAX_VARIANTS", 5),
        "JOB_POST_MIN": _int_env(env, "JOB_POST_MIN", 40),
        "SKILLS_MIN": _int_env(env, "SKILLS_MIN", 20),
        "RATE_LIMIT_MAX": rate_max,
        "RATE_LIMIT_WINDOW_MS": window_ms,
        "RATE_LIMIT_DEFAULT": f"{rate_max} per {window_s} second",
        "RATE_LIMIT_STORAGE_URI": env.get("RATE_LIMIT_STORAGE_URI") or "memory://",
        "IP_BAN_LIST": set(_csv_env(env, "IP_BAN_LIST")),
        "TRUST_PROXY": _bool_env(env, "TRUST_PROXY", False),

        # Turnstile
        "TURNSTILE_SITE_KEY": env.get("TURNSTILE_SITE_KEY") or None,
        "TURNSTILE_SECRET_KEY": env.get("TURNSTILE_SECRET_KEY") or None,

        # CORS
        "ALLOWED_ORIGINS": _csv_env(env, "ALLOWED_ORIGINS") or [base_url],

        # Secrets / entitlement cookie
        "SECRET_KEY": env.get("APP_SECRET", ""),
        "JWT_SECRET_KEY": env.get("APP_SECRET", ""),
        "PREMIUM_DAYS": premium_days,
        "JWT_ACCESS_TOKEN_EXPIRES": timedelta(days=premium_days),
        "JWT_COOKIE_SECURE": cookie_secure,
    }
