"""Trade routes forward validated requests to the bridge"""
import pytest

from signaldesk.errors import ProviderError
from signaldesk.trade.bridge import HttpTradeBridge

from helpers import auth_headers, create_profile

ORDER = {"sessionId": "session-1", "symbol": "EURUSD", "type": "BUY", "lots": 0.1, "sl": 1.08}


def test_connect(client, db, run, bridge):
    user_id = run(create_profile(db))

    response = client.post(
        "/api/trade/connect",
        json={"login": "5001", "password": "pw", "server": "Demo", "serverUrl": "https://broker.example"},
        headers=auth_headers(user_id)
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "sessionId": "session-1"}
    assert bridge.calls[0][1]["serverUrl"] == "https://broker.example"


def test_connect_missing_fields(client, db, run, bridge):
    user_id = run(create_profile(db))

    response = client.post("/api/trade/connect", json={"login": "5001"}, headers=auth_headers(user_id))

    assert response.status_code == 400
    assert bridge.calls == []


def test_execute_forwards_order(client, db, run, bridge):
    user_id = run(create_profile(db))

    response = client.post("/api/trade/execute", json=ORDER, headers=auth_headers(user_id))

    assert response.status_code == 200
    assert bridge.calls == [("execute", "session-1", {"symbol": "EURUSD", "type": "BUY", "lots": 0.1, "sl": 1.08})]


@pytest.mark.parametrize("override", [{"type": "HOLD"}, {"lots": 0}])
def test_execute_rejects_bad_orders(client, db, run, bridge, override):
    user_id = run(create_profile(db))

    response = client.post("/api/trade/execute", json={**ORDER, **override}, headers=auth_headers(user_id))

    assert response.status_code == 400
    assert bridge.calls == []


def test_bridge_failure_is_bad_gateway(client, db, run, bridge):
    user_id = run(create_profile(db))
    bridge.fail = True

    response = client.post("/api/trade/execute", json=ORDER, headers=auth_headers(user_id))

    assert response.status_code == 502
    assert response.json()["error"] == "Order rejected"


def test_disconnect(client, db, run, bridge):
    user_id = run(create_profile(db))

    response = client.post("/api/trade/disconnect", json={"sessionId": "session-1"}, headers=auth_headers(user_id))

    assert response.status_code == 200
    assert bridge.calls == [("disconnect", "session-1")]


def test_trade_requires_session(client):
    assert client.post("/api/trade/disconnect", json={"sessionId": "s"}).status_code == 401


async def test_unconfigured_bridge_raises():
    with pytest.raises(ProviderError):
        await HttpTradeBridge(base_url="").connect({"login": "1"})
