# app.py
from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import sentry_sdk
from dotenv import load_dotenv
from flask import Flask, current_app, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_limiter import Limiter
from flask_talisman import Talisman
from sentry_sdk.integrations.flask import FlaskIntegration
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

# --- Load env BEFORE reading config ---
ENV_PATH = Path(__file__).with_name(".env")
load_dotenv(ENV_PATH)

# --- Local modules ---
from auth import auth_bp, current_entitlement, init_auth
from billing import init_billing
from config import config_object, env_config, validate_required_secrets
from guards import init_guards
from helpers import _now, client_ip, day_key, identity_key
from llm_client import CompletionClient, LLMError, LLMRateLimited
from metrics import daily_summary
from parsers import recover_from_completions
from prompts import BadInput, build_messages, estimate_cost_usd, parse_generate_request
from quota import QuotaPolicy
from storage import InMemoryQuotaStore
from stripe_client import StripeBridge
from turnstile import verify_turnstile

LOG = logging.getLogger("autopitch.app")

STATIC_DIR = Path(__file__).with_name("static")

CSP = {
    "default-src": ["'self'"],
    "script-src": ["'self'", "https://js.stripe.com", "https://challenges.cloudflare.com"],
    "style-src": ["'self'", "'unsafe-inline'"],
    "img-src": ["'self'", "data:"],
    "connect-src": ["'self'", "https://api.stripe.com", "https://r.stripe.com"],
    "frame-src": [
        "'self'", "https://js.stripe.com", "https://buy.stripe.com", "https://challenges.cloudflare.com",
    ],
}


def init_error_reporting(cfg: Mapping[str, Any]) -> bool:
    """Send unhandled errors to Sentry when SENTRY_DSN is set."""
    dsn = cfg.get("SENTRY_DSN")
    if not dsn:
        return False
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.1,
        environment=cfg.get("ENV_NAME"),
    )
    LOG.info("Sentry error reporting enabled")
    return True


def create_app(env: Optional[Mapping[str, str]] = None, overrides: Optional[dict[str, Any]] = None) -> Flask:
    env = os.environ if env is None else env
    validate_required_secrets(env)  # raises on missing/malformed secrets

    # ------------------------------
    # App / Config
    # ------------------------------
    app = Flask(__name__, static_folder=str(STATIC_DIR), static_url_path="")
    app.config.from_object(config_object(env))
    app.config.update(env_config(env))
    app.config.update(overrides or {})
    app.url_map.strict_slashes = False

    init_error_reporting(app.config)

    if app.config["TRUST_PROXY"]:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)

    CORS(
        app,
        resources={r"/*": {"origins": app.config["ALLOWED_ORIGINS"]}},
        supports_credentials=True,
        allow_headers=["Content-Type", "X-Turnstile-Token"],
        methods=["GET", "POST", "OPTIONS"],
    )

    Talisman(
        app,
        force_https=app.config["FORCE_HTTPS"],
        content_security_policy={
            **CSP,
            "connect-src": CSP["connect-src"] + [app.config["APP_BASE_URL"]],
        },
        session_cookie_secure=app.config["JWT_COOKIE_SECURE"],
        session_cookie_samesite="Lax",
        referrer_policy="no-referrer",
    )

    # Burst limiter applies to every route and every tier
    limiter = Limiter(
        key_func=lambda: client_ip(request, current_app.config["TRUST_PROXY"]),
        app=app,
        default_limits=[app.config["RATE_LIMIT_DEFAULT"]],
        storage_uri=app.config["RATE_LIMIT_STORAGE_URI"],
        headers_enabled=True,
    )

    # ------------------------------
    # Services
    # ------------------------------
    app.extensions["quota_store"] = InMemoryQuotaStore()
    app.extensions["quota_policy"] = QuotaPolicy.from_config(app.config)
    app.extensions["completion_client"] = CompletionClient(
        app.config["OPENAI_API_KEY"],
        base_url=app.config["OPENAI_BASE_URL"],
        timeout=app.config["LLM_TIMEOUT_SECONDS"],
    )
    app.extensions["billing"] = StripeBridge(
        app.config["STRIPE_SECRET_KEY"],
        base_url=app.config["APP_BASE_URL"],
        standard_price_id=app.config["STANDARD_PRICE_ID"],
        premium_price_id=app.config["PREMIUM_PRICE_ID"],
        promotion_code_id=app.config["PROMOTION_CODE_ID"],
        webhook_secret=app.config["STRIPE_WEBHOOK_SECRET"],
    )

    init_guards(app)
    app.register_blueprint(auth_bp)
    init_auth(app)
    init_billing(app, limiter)
    _register_routes(app)
    _register_error_handlers(app)
    return app


def _register_routes(app: Flask) -> None:
    @app.get("/")
    def home():
        return send_from_directory(STATIC_DIR, "index.html")

    @app.after_request
    def _cache_headers(resp):
        if request.path == "/" or request.path.endswith(".html"):
            resp.headers["Cache-Control"] = "no-cache"
        return resp

    @app.get("/health")
    def health():
        cfg = current_app.config
        bridge = current_app.extensions["billing"]
        return jsonify({
            "ok": True,
            "model": cfg["OPENAI_MODEL"],
            "checkout_enabled": bridge.checkout_enabled,
            "stripe_mode": "live" if bridge.live else "test",
            "free_daily_limit": cfg["FREE_DAILY_LIMIT"],
            "captcha_after": cfg["FREE_CAPTCHA_AFTER"],
            "has_turnstile": bool(cfg["TURNSTILE_SITE_KEY"] and cfg["TURNSTILE_SECRET_KEY"]),
            "turnstile_site_key": cfg["TURNSTILE_SITE_KEY"],
            "rate_limit": {"max": cfg["RATE_LIMIT_MAX"], "window_ms": cfg["RATE_LIMIT_WINDOW_MS"]},
        })

    @app.get("/metrics")
    def metrics():
        return jsonify(daily_summary(current_app.extensions["quota_store"], day_key()))

    @app.post("/generate")
    def generate():
        cfg = current_app.config
        store = current_app.extensions["quota_store"]
        policy = current_app.extensions["quota_policy"]

        ip = client_ip(request, cfg["TRUST_PROXY"])
        day = day_key(_now())
        key = identity_key(ip, day)
        rec = store.record_attempt(key, ip, day)

        ent = current_entitlement()
        premium = ent is not None
        plan = ent.plan if ent else None

        # server daily cap; the slot is held until the request settles
        if store.reserve(key, ip, day, policy.daily_cap(premium)) is None:
            store.record_limit_hit(key, ip, day)
            return jsonify({"message": f"Daily free limit ({policy.daily_limit}) reached."}), 402

        settled = False
        try:
            data = request.get_json(silent=True)
            if not isinstance(data, dict):
                data = {}

            # human check after N calls (free only)
            if policy.needs_challenge(rec, premium):
                token = request.headers.get("X-Turnstile-Token") or data.get("turnstileToken")
                if not verify_turnstile(cfg["TURNSTILE_SECRET_KEY"], str(token or ""), ip):
                    return jsonify({"error": "captcha_failed"}), 401

            try:
                req = parse_generate_request(data, job_post_min=cfg["JOB_POST_MIN"], skills_min=cfg["SKILLS_MIN"])
            except BadInput as e:
                return jsonify({"error": "bad_input", "details": e.details}), 400

            variants = policy.effective_variants(req.variants, plan)
            model = cfg["OPENAI_PREMIUM_MODEL"] if plan == "premium" else cfg["OPENAI_MODEL"]
            est_cost = estimate_cost_usd(req, variants)

            try:
                texts = current_app.extensions["completion_client"].complete(
                    build_messages(req, variants), model=model, n=variants
                )
            except LLMRateLimited:
                LOG.warning("completion vendor rate limited ip=%s", ip)
                return jsonify({"error": "openai_rate_limited"}), 429
            except LLMError:
                LOG.exception("completion failed ip=%s", ip)
                return jsonify({"error": "ai_failed"}), 502

            if not texts:
                LOG.error("completion returned no text ip=%s", ip)
                return jsonify({"error": "ai_failed"}), 502

            emails = recover_from_completions(texts, variants)
            store.record_success(key, ip, day, est_cost)
            settled = True
        finally:
            if not settled:
                store.release(key, ip, day)

        resp = jsonify({"emails": emails, "variants": variants})
        resp.headers["X-Estimated-Cost-USD"] = str(est_cost)
        return resp


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(429)
    def _rate_limited(e):
        return jsonify({"error": "rate_limited"}), 429

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return jsonify({"error": (e.name or "error").lower().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def _unexpected(e: Exception):
        LOG.exception("unhandled error on %s", request.path)
        # handled errors never reach the Flask integration's signal hook
        sentry_sdk.capture_exception(e)
        return jsonify({"error": "internal_error"}), 500


# ------------------------------
# Entrypoint
# ------------------------------
if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    try:
        application = create_app()
    except RuntimeError as e:
        LOG.error("ENV ERROR: %s", e)
        raise SystemExit(1)
    application.run(host="0.0.0.0", port=application.config["PORT"], debug=application.config.get("DEBUG", False))
