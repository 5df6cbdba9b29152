# billing.py
from __future__ import annotations
import logging

from flask import Blueprint, current_app, jsonify, request

from auth import set_entitlement_cookie
from stripe_client import LIFECYCLE_EVENTS, BillingError, WebhookError

billing_bp = Blueprint("billing", __name__)
webhook_bp = Blueprint("stripe_webhook", __name__)

LOG = logging.getLogger("autopitch.billing")


def _bridge():
    return current_app.extensions["billing"]


@billing_bp.post("/checkout")
def checkout():
    """
    Request: { "plan": "standard" | "premium" }
    Response: { "url": "<stripe checkout url>" }
    """
    data = request.get_json(silent=True) or {}
    plan = data.get("plan")
    try:
        url = _bridge().create_checkout(plan)
    except BillingError:
        LOG.exception("checkout failed for plan=%s", plan)
        return jsonify({"error": "checkout_failed"}), 502
    return jsonify({"url": url})


@billing_bp.post("/portal")
def portal():
    """
    Request: { "email": "..." } or { "sessionId": "cs_..." }
    Response: { "url": "<stripe billing portal url>" }
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip() or None
    session_id = (data.get("sessionId") or data.get("session_id") or "").strip() or None
    if not email and not session_id:
        return jsonify({"error": "email_or_session_required"}), 400
    try:
        url = _bridge().portal_url(email=email, session_id=session_id)
    except BillingError:
        LOG.exception("portal lookup failed")
        return jsonify({"error": "portal_failed"}), 502
    if not url:
        return jsonify({"error": "no_customer"}), 404
    return jsonify({"url": url})


@billing_bp.post("/claim")
def claim():
    """
    Request: { "session_id": "cs_..." }
    Sets the entitlement cookie when the subscription is live.
    """
    data = request.get_json(silent=True) or {}
    session_id = (data.get("session_id") or data.get("sessionId") or "").strip()
    if not session_id:
        return jsonify({"error": "session_id_required"}), 400
    try:
        sub = _bridge().subscription_for_session(session_id)
    except BillingError:
        LOG.exception("claim lookup failed")
        return jsonify({"error": "claim_failed"}), 502
    if not sub.active:
        LOG.info("claim rejected: subscription status=%s", sub.status)
        return jsonify({"error": "no_active_subscription"}), 402

    resp = jsonify({"premium": True, "plan": sub.plan})
    return set_entitlement_cookie(resp, sub.plan)


@webhook_bp.post("/stripe/webhook")
def stripe_webhook():
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")
    try:
        event = _bridge().construct_event(payload, sig_header)
    except WebhookError as e:
        return f"Webhook Error: {e}", 400

    if event["type"] in LIFECYCLE_EVENTS:
        LOG.info("[webhook] %s %s", event["type"], event["data"]["object"]["id"])
    return jsonify({"received": True})


def init_billing(app, limiter=None):
    app.register_blueprint(billing_bp)
    if app.config.get("STRIPE_WEBHOOK_SECRET"):
        if limiter is not None:
            limiter.exempt(webhook_bp)
        app.register_blueprint(webhook_bp)
