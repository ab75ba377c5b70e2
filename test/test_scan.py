"""Scan orchestration: provider calls, recording, metering and batch behaviour"""
import pytest

from signaldesk.errors import LedgerUnavailable, ProviderError
from signaldesk.scan.provider import parse_reply
from signaldesk.scan.services import ScanOrchestrator, normalize_analysis
from signaldesk.credits.ledger import CreditLedger

from helpers import StubProvider, add_credits, add_scans, analysis_reply, auth_headers, create_profile

PAIRS = [
    {"symbol": "OANDA:EUR_USD", "display": "EUR/USD"},
    {"symbol": "OANDA:GBP_USD", "display": "GBP/USD"},
    {"symbol": "OANDA:USD_JPY", "display": "USD/JPY"},
]

SCAN_BODY = {"symbol": "OANDA:EUR_USD", "displaySymbol": "EUR/USD", "timeframe": "1h"}


class SteppingClock:
    """Each reading advances by a fixed step"""

    def __init__(self, step):
        self.step = step
        self.now = 0.0

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


# Normalization

def test_normalize_requires_trend_bias_confidence():
    raw = analysis_reply()
    del raw["bias"]

    with pytest.raises(ProviderError):
        normalize_analysis(raw, "OANDA:EUR_USD", "1h")


def test_normalize_clamps_confidence():
    assert normalize_analysis(analysis_reply(confidence=150), "X", "1h").confidence == 100
    assert normalize_analysis(analysis_reply(confidence=-5), "X", "1h").confidence == 0


def test_normalize_accepts_alternate_field_names():
    raw = analysis_reply(take_profit=None, take_profit_1=1.09, notes=None, reasoning="Because.")

    analysis = normalize_analysis(raw, "X", "4h")

    assert analysis.take_profit == 1.09
    assert analysis.notes == "Because."


def test_normalize_stringifies_numeric_text_fields():
    raw = analysis_reply(risk_reward=2.5, grade=1, structure=None)

    analysis = normalize_analysis(raw, "X", "1h")

    assert analysis.risk_reward == "2.5"
    assert analysis.grade == "1"
    assert analysis.structure is None


def test_parse_reply_strips_fences():
    assert parse_reply('```json\n{"trend": "Bullish"}\n```') == {"trend": "Bullish"}


def test_parse_reply_rejects_garbage():
    with pytest.raises(ProviderError):
        parse_reply("I could not analyze this chart.")
    with pytest.raises(ProviderError):
        parse_reply("")


# Orchestrator

async def test_single_pair_records_one_scan(db):
    provider = StubProvider()
    orchestrator = ScanOrchestrator(provider)

    signal = await orchestrator.scan_single_pair("OANDA:EUR_USD", "EUR/USD", "1h", "user-a", "plan", db)

    assert len(provider.calls) == 1
    assert signal.direction == "BUY"
    assert await db.scans.count_documents({"user_id": "user-a", "credit_source": "plan"}) == 1


async def test_single_pair_provider_failure_records_nothing(db):
    orchestrator = ScanOrchestrator(StubProvider([ProviderError("timeout")]))

    with pytest.raises(ProviderError):
        await orchestrator.scan_single_pair("OANDA:EUR_USD", "EUR/USD", "1h", "user-a", "plan", db)

    assert await db.scans.count_documents({}) == 0


async def test_batch_partial_failure(db):
    provider = StubProvider([
        analysis_reply(confidence=60),
        ProviderError("Analysis timed out"),
        analysis_reply(bias="bearish", trend="Bearish", confidence=85),
    ])
    orchestrator = ScanOrchestrator(provider)

    result = await orchestrator.run_signal_scan(PAIRS, ["1h"], "user-a", db)

    assert result["signalsGenerated"] == 2
    assert len(result["signals"]) == 2
    assert len(result["errors"]) == 1
    assert result["errors"][0].startswith("GBP/USD 1h")
    assert [s.confidence for s in result["signals"]] == [85, 60]
    assert await db.scans.count_documents({"credit_source": "batch"}) == 2


async def test_batch_skips_neutral_and_grade_d(db):
    provider = StubProvider([
        analysis_reply(bias="neutral", trend="Ranging"),
        analysis_reply(grade="D"),
        analysis_reply(),
    ])
    orchestrator = ScanOrchestrator(provider)

    result = await orchestrator.run_signal_scan(PAIRS, ["1h"], "user-a", db)

    assert result["signalsGenerated"] == 1
    assert result["recorded"] == 3


async def test_batch_deadline_stops_remaining_pairs(db):
    provider = StubProvider()
    orchestrator = ScanOrchestrator(provider, batch_timeout=10, clock=SteppingClock(6))

    result = await orchestrator.run_signal_scan(PAIRS, ["1h"], "user-a", db)

    assert len(provider.calls) == 1
    assert result["scannedPairs"] == 1
    assert "deadline" in result["errors"][-1]


# Routes

def test_scan_route_success(client, db, run, provider):
    user_id = run(create_profile(db))

    response = client.post("/api/scan", json=SCAN_BODY, headers=auth_headers(user_id))

    assert response.status_code == 200
    body = response.json()
    assert body["signal"]["displaySymbol"] == "EUR/USD"
    assert body["signal"]["shareId"]
    assert body["usage"]["dailyUsed"] == 1
    assert body["usage"]["canScan"] is False
    assert len(provider.calls) == 1


def test_scan_route_quota_exceeded(client, db, run, provider):
    user_id = run(create_profile(db))
    run(add_scans(db, user_id, 1))

    response = client.post("/api/scan", json=SCAN_BODY, headers=auth_headers(user_id))

    assert response.status_code == 429
    body = response.json()
    assert body["upgrade"] is True
    assert body["usage"]["dailyUsed"] == 1
    assert body["error"] == "Daily scan limit reached (1/1). Upgrade for more."
    assert provider.calls == []


def test_scan_route_topup_scan_debits_one_credit(client, db, run):
    user_id = run(create_profile(db))
    run(add_scans(db, user_id, 1))
    run(add_credits(db, user_id, 3))

    response = client.post("/api/scan", json=SCAN_BODY, headers=auth_headers(user_id))

    assert response.status_code == 200
    assert response.json()["usage"]["topupBalance"] == 2
    assert run(db.scans.count_documents({"credit_source": "topup"})) == 1


def test_scan_route_provider_failure_consumes_nothing(client, db, run, provider):
    user_id = run(create_profile(db))
    run(add_scans(db, user_id, 1))
    run(add_credits(db, user_id, 2))
    provider.replies.append(ProviderError("Analysis timed out"))

    response = client.post("/api/scan", json=SCAN_BODY, headers=auth_headers(user_id))

    assert response.status_code == 502
    assert response.json()["error"] == "Analysis timed out"
    assert run(db.scans.count_documents({})) == 1
    assert run(CreditLedger.get_topup_balance(user_id, db)) == 2


def test_scan_route_provider_failure_refunds_topup(client, db, run, provider):
    user_id = run(create_profile(db))
    run(add_scans(db, user_id, 1))
    run(add_credits(db, user_id, 2))
    provider.replies.append(ProviderError("Analysis timed out"))

    client.post("/api/scan", json=SCAN_BODY, headers=auth_headers(user_id))

    assert run(db.credit_transactions.count_documents({"type": "scan_debit"})) == 1
    assert run(db.credit_transactions.count_documents({"type": "scan_refund"})) == 1


def test_scan_route_ledger_outage_on_debit_records_nothing(client, db, run, provider, monkeypatch):
    user_id = run(create_profile(db))
    run(add_scans(db, user_id, 1))
    run(add_credits(db, user_id, 3))

    real_balance = CreditLedger.get_topup_balance
    calls = []

    async def flaky_balance(uid, database):
        calls.append(uid)
        if len(calls) == 2:
            raise LedgerUnavailable()
        return await real_balance(uid, database)

    monkeypatch.setattr(CreditLedger, "get_topup_balance", staticmethod(flaky_balance))

    response = client.post("/api/scan", json=SCAN_BODY, headers=auth_headers(user_id))

    assert response.status_code == 503
    assert provider.calls == []
    assert run(db.scans.count_documents({"credit_source": "topup"})) == 0
    assert run(db.credit_transactions.count_documents({})) == 1


def test_scan_route_refused_debit_records_nothing(client, db, run, provider, monkeypatch):
    user_id = run(create_profile(db))
    run(add_scans(db, user_id, 1))
    run(add_credits(db, user_id, 1))

    async def no_credit(uid, description, database):
        return False

    monkeypatch.setattr(CreditLedger, "debit_one", staticmethod(no_credit))

    response = client.post("/api/scan", json=SCAN_BODY, headers=auth_headers(user_id))

    assert response.status_code == 429
    assert provider.calls == []
    assert run(db.scans.count_documents({})) == 1


def test_scan_route_unknown_timeframe(client, db, run, provider):
    user_id = run(create_profile(db))

    response = client.post("/api/scan", json={**SCAN_BODY, "timeframe": "7m"}, headers=auth_headers(user_id))

    assert response.status_code == 400
    assert response.json()["error"] == "Unsupported timeframe: 7m"
    assert provider.calls == []


def test_scan_route_missing_fields(client, db, run):
    user_id = run(create_profile(db))

    response = client.post("/api/scan", json={"symbol": "OANDA:EUR_USD"}, headers=auth_headers(user_id))

    assert response.status_code == 400
    assert "timeframe" in response.json()["error"]


def test_scan_route_requires_session(client):
    response = client.post("/api/scan", json=SCAN_BODY)

    assert response.status_code == 401


def test_full_scan_requires_pro(client, db, run):
    user_id = run(create_profile(db, plan_id="starter", status="active"))

    response = client.post("/api/scan/full", json={}, headers=auth_headers(user_id))

    assert response.status_code == 403


def test_full_scan_consumes_one_unit(client, db, run, provider):
    user_id = run(create_profile(db, plan_id="pro", status="active"))
    provider.replies.extend([
        analysis_reply(),
        ProviderError("Analysis provider error: 500"),
        analysis_reply(confidence=90),
    ])

    response = client.post(
        "/api/scan/full",
        json={"pairs": [p["symbol"] for p in PAIRS], "timeframes": ["1h"]},
        headers=auth_headers(user_id)
    )

    assert response.status_code == 200
    body = response.json()
    assert body["signalsGenerated"] == 2
    assert len(body["errors"]) == 1
    assert body["usage"]["dailyUsed"] == 1


def test_full_scan_with_no_results_refunds_topup(client, db, run, provider):
    user_id = run(create_profile(db, plan_id="pro", status="active"))
    run(add_scans(db, user_id, 50))
    run(add_credits(db, user_id, 3))
    provider.replies.extend([ProviderError("Analysis provider error: 500")] * 3)

    response = client.post(
        "/api/scan/full",
        json={"pairs": [p["symbol"] for p in PAIRS], "timeframes": ["1h"]},
        headers=auth_headers(user_id)
    )

    assert response.status_code == 200
    assert response.json()["signalsGenerated"] == 0
    assert run(CreditLedger.get_topup_balance(user_id, db)) == 3
    assert run(db.credit_transactions.count_documents({"type": "scan_refund"})) == 1


def test_full_scan_rejects_unknown_pair(client, db, run):
    user_id = run(create_profile(db, plan_id="pro", status="active"))

    response = client.post("/api/scan/full", json={"pairs": ["BTC"]}, headers=auth_headers(user_id))

    assert response.status_code == 400


def test_history_lists_own_scans(client, db, run):
    user_id = run(create_profile(db))
    run(add_scans(db, user_id, 2))
    run(add_scans(db, "someone-else", 3))

    response = client.get("/api/scan/history", headers=auth_headers(user_id))

    assert response.status_code == 200
    assert response.json()["total"] == 2


def test_share_view_hides_levels_from_anonymous(client, db, run):
    user_id = run(create_profile(db))
    scan = client.post("/api/scan", json=SCAN_BODY, headers=auth_headers(user_id)).json()["signal"]

    anonymous = client.get(f"/api/scan/share/{scan['shareId']}")
    owner = client.get(f"/api/scan/share/{scan['shareId']}", headers=auth_headers(user_id))

    assert anonymous.status_code == 200
    assert anonymous.json()["access"] == "limited"
    assert "entry_price" not in anonymous.json()["analysis"]
    assert owner.json()["access"] == "full"
    assert owner.json()["analysis"]["entry_price"] == 1.084


def test_share_view_unknown_id(client):
    assert client.get("/api/scan/share/missing").status_code == 404
