# guards.py
import re

from flask import current_app, jsonify, request

from auth import current_entitlement
from helpers import client_ip

BOT_UA_RE = re.compile(r"(bot|spider|crawl|curl|wget|httpclient|python-requests|scrapy)", re.I)
GUARDED_PATHS = {"/generate"}


def is_bot_ua(ua: str) -> bool:
    return not ua or bool(BOT_UA_RE.search(ua))


def protect():
    """before_request hook: ban list everywhere, browser checks on /generate."""
    ip = client_ip(request, current_app.config["TRUST_PROXY"])
    if ip in current_app.config["IP_BAN_LIST"]:
        return jsonify({"error": "blocked"}), 403

    if request.path in GUARDED_PATHS and current_entitlement() is None:
        if is_bot_ua(request.headers.get("User-Agent", "")):
            return jsonify({"error": "browser required"}), 400
        if not request.headers.get("Accept-Language"):
            return jsonify({"error": "locale required"}), 400
    return None


def init_guards(app):
    app.before_request(protect)
