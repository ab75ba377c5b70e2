"""Shared test data builders and stand-ins for external services"""
from datetime import datetime, timedelta

from signaldesk.auth.jwt_handler import create_access_token
from signaldesk.errors import ProviderError


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


async def create_profile(db, plan_id="free", status="none", expires_in_days=30, role="user", **extra) -> str:
    profile = {
        "email": extra.pop("email", f"trader{datetime.utcnow().timestamp()}@example.com"),
        "full_name": extra.pop("full_name", "Test Trader"),
        "plan_id": plan_id,
        "subscription_status": status,
        "subscription_expires_at": datetime.utcnow() + timedelta(days=expires_in_days) if status == "active" else None,
        "role": role,
        "created_at": datetime.utcnow(),
        **extra
    }
    result = await db.profiles.insert_one(profile)
    return str(result.inserted_id)


async def add_scans(db, user_id: str, count: int, credit_source="plan", when=None, **extra):
    when = when or datetime.utcnow()
    for i in range(count):
        await db.scans.insert_one({
            "user_id": user_id,
            "pair": "OANDA:EUR_USD",
            "display_pair": "EUR/USD",
            "timeframe": "1h",
            "trend": "Bullish",
            "bias": "bullish",
            "confidence": 70,
            "analysis": {},
            "share_id": f"seed{i}{credit_source}{when.timestamp()}",
            "credit_source": credit_source,
            "created_at": when,
            **extra
        })


async def add_credits(db, user_id: str, amount: int, entry_type="purchase"):
    await db.credit_transactions.insert_one({
        "user_id": user_id,
        "amount": amount,
        "type": entry_type,
        "description": "seed",
        "created_by": None,
        "created_at": datetime.utcnow()
    })


async def add_payment(db, user_id: str, reference: str, kind="subscription", age_minutes=10, **fields):
    payment = {
        "user_id": user_id,
        "reference": reference,
        "kind": kind,
        "plan_id": "pro" if kind == "subscription" else None,
        "period": "monthly" if kind == "subscription" else None,
        "months": 1 if kind == "subscription" else None,
        "credits_amount": 12 if kind == "credits" else None,
        "amount_cents": 34900 if kind == "subscription" else 9900,
        "status": "pending",
        "created_at": datetime.utcnow() - timedelta(minutes=age_minutes),
        "completed_at": None,
        "activation_method": None,
        "verifier_status": None,
        **fields
    }
    await db.payments.insert_one(payment)
    return await db.payments.find_one({"reference": reference})


def analysis_reply(**overrides) -> dict:
    reply = {
        "trend": "Bullish",
        "bias": "bullish",
        "confidence": 72,
        "grade": "B",
        "structure": "HH/HL with BOS",
        "support": 1.0820,
        "resistance": 1.0870,
        "entry_price": 1.0840,
        "stop_loss": 1.0815,
        "take_profit": 1.0890,
        "risk_reward": "1:2",
        "confluences": ["Bullish BOS", "Demand zone retest"],
        "key_levels": [{"price": 1.0870, "type": "resistance", "strength": "strong"}],
        "notes": "Continuation setup."
    }
    reply.update(overrides)
    return reply


class StubProvider:
    """Returns queued replies in order; an exception in the queue is raised"""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    async def analyze(self, pair, display, timeframe):
        self.calls.append((pair, display, timeframe))
        reply = self.replies.pop(0) if self.replies else analysis_reply()
        if isinstance(reply, Exception):
            raise reply
        return reply


class StubVerifier:
    """Verifier answers keyed by reference; default is pending"""

    def __init__(self, statuses=None):
        self.statuses = dict(statuses or {})
        self.calls = []

    async def fetch_status(self, reference):
        self.calls.append(reference)
        status = self.statuses.get(reference, "pending")
        if isinstance(status, Exception):
            raise status
        return status

    async def initialize(self, email, amount_cents, currency, callback_url, metadata):
        reference = f"ref_{len(self.calls)}_{amount_cents}"
        self.calls.append(("initialize", amount_cents, metadata))
        return {
            "reference": reference,
            "authorization_url": f"https://checkout.example/{reference}",
            "access_code": "code"
        }


class StubBridge:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def connect(self, credentials):
        self.calls.append(("connect", credentials))
        if self.fail:
            raise ProviderError("Broker login failed")
        return "session-1"

    async def execute(self, session_id, order):
        self.calls.append(("execute", session_id, order))
        if self.fail:
            raise ProviderError("Order rejected")
        return {"success": True, "ticket": 1001, **order}

    async def disconnect(self, session_id):
        self.calls.append(("disconnect", session_id))
