import json

import pytest

from app import create_app
from stripe_client import StripeBridge, Subscription

BASE_ENV = {
    "OPENAI_API_KEY": "sk-test",
    "STRIPE_SECRET_KEY": "sk_test_123",
    "STANDARD_PRICE_ID": "price_standard",
    "PREMIUM_PRICE_ID": "price_premium",
    "APP_BASE_URL": "http://localhost:3000",
    "APP_SECRET": "x" * 48,
    "COOKIE_SECURE": "0",
    "RATE_LIMIT_MAX": "1000",
}

BROWSER = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) Gecko/20100101 Firefox/128.0",
    "Accept-Language": "en-US,en;q=0.9",
}

JOB_POST = "Senior backend engineer to build payment APIs in Python and Postgres for a fintech startup."
SKILLS = "Python, Flask, PostgreSQL, Stripe integrations, AWS"


def email_json(subject="Hello there", body="I build payment APIs."):
    return json.dumps({"emails": [{"subject": subject, "body": body}]})


class FakeCompletions:
    """Stands in for CompletionClient; records every call."""

    def __init__(self):
        self.calls = []
        self.texts = None
        self.error = None

    def complete(self, messages, *, model, n=1, **kwargs):
        self.calls.append({"messages": messages, "model": model, "n": n})
        if self.error is not None:
            raise self.error
        if self.texts is not None:
            return list(self.texts)
        return [email_json(subject=f"Draft {i + 1}") for i in range(n)]


class FakeBilling(StripeBridge):
    """StripeBridge with the network calls replaced."""

    def __init__(self, **kwargs):
        super().__init__(
            "sk_test_123",
            base_url="http://localhost:3000",
            standard_price_id="price_standard",
            premium_price_id="price_premium",
            **kwargs,
        )
        self.subscription = Subscription(status="active", plan="standard")
        self.customer_url = "https://billing.stripe.com/p/session/test"
        self.calls = []

    def create_checkout(self, plan):
        self.calls.append(("checkout", plan))
        return f"https://checkout.stripe.com/c/pay/{self.price_for(plan)}"

    def subscription_for_session(self, session_id):
        self.calls.append(("claim", session_id))
        return self.subscription

    def portal_url(self, *, email=None, session_id=None):
        self.calls.append(("portal", email, session_id))
        return self.customer_url


@pytest.fixture
def make_app():
    def _make(**env):
        app = create_app(env={**BASE_ENV, **env}, overrides={"TESTING": True})
        app.extensions["completion_client"] = FakeCompletions()
        app.extensions["billing"] = FakeBilling(webhook_secret=app.config["STRIPE_WEBHOOK_SECRET"])
        return app
    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def llm(app):
    return app.extensions["completion_client"]


@pytest.fixture
def billing(app):
    return app.extensions["billing"]


@pytest.fixture
def payload():
    return {
        "jobPost": JOB_POST,
        "skills": SKILLS,
        "tone": "friendly",
        "cta": "short call",
        "variants": 1,
    }


def generate(client, body, ip="10.0.0.1", headers=None):
    return client.post(
        "/generate",
        json=body,
        headers={**BROWSER, **(headers or {})},
        environ_base={"REMOTE_ADDR": ip},
    )
