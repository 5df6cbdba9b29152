# turnstile.py
import logging
from typing import Optional

import requests

VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
TIMEOUT = 10

LOG = logging.getLogger("autopitch.turnstile")


def verify_turnstile(secret: Optional[str], token: Optional[str], remote_ip: Optional[str] = None) -> bool:
    """Confirm a Turnstile token with Cloudflare.

    Without a configured secret the check is disabled and passes. Any
    network, HTTP or decoding failure counts as a failed check.
    """
    if not secret:
        return True
    if not token:
        return False
    try:
        r = requests.post(
            VERIFY_URL,
            data={"secret": secret, "response": token, "remoteip": remote_ip or ""},
            timeout=TIMEOUT,
        )
        r.raise_for_status()
        data = r.json()
        return isinstance(data, dict) and data.get("success") is True
    except (requests.RequestException, ValueError) as e:
        LOG.warning("Turnstile verification failed closed: %s", e)
        return False
