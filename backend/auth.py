# auth.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import JWTManager, create_access_token, decode_token, set_access_cookies
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

auth_bp = Blueprint("auth", __name__)
jwt_manager = JWTManager()

PREMIUM_SUBJECT = "premium"


@dataclass(frozen=True)
class Entitlement:
    plan: str
    expires_at: datetime


def issue_entitlement(plan: str, expires_delta: Optional[timedelta] = None) -> str:
    """Signed token asserting premium membership until its embedded expiry."""
    return create_access_token(
        identity=PREMIUM_SUBJECT,
        additional_claims={"tier": "premium", "plan": plan},
        expires_delta=expires_delta or current_app.config["JWT_ACCESS_TOKEN_EXPIRES"],
    )


def decode_entitlement(token: Optional[str]) -> Optional[Entitlement]:
    """Claims of a valid token; None for missing, tampered or expired ones."""
    if not token:
        return None
    try:
        claims = decode_token(token)
    except (PyJWTError, JWTExtendedException):
        return None
    if claims.get("sub") != PREMIUM_SUBJECT or claims.get("tier") != "premium":
        return None
    return Entitlement(
        plan=claims.get("plan") or "standard",
        expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
    )


def current_entitlement() -> Optional[Entitlement]:
    return decode_entitlement(request.cookies.get(current_app.config["JWT_ACCESS_COOKIE_NAME"]))


def set_entitlement_cookie(resp, plan: str):
    token = issue_entitlement(plan)
    set_access_cookies(resp, token, max_age=current_app.config["PREMIUM_DAYS"] * 24 * 3600)
    return resp


@auth_bp.get("/me")
def me():
    ent = current_entitlement()
    return jsonify({"premium": ent is not None, "plan": ent.plan if ent else None})


def init_auth(app):
    """
    Call once from the app factory:
        app.register_blueprint(auth_bp)
        init_auth(app)
    """
    jwt_manager.init_app(app)
