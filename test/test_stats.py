"""Public stats: real counts, short cache, zeros on outage"""
from datetime import datetime, timedelta

from signaldesk.database.connection import get_optional_database
from signaldesk.stats.cache import ResponseCache
from main import app

from helpers import add_scans, create_profile


class BrokenCollection:
    async def count_documents(self, *args, **kwargs):
        raise ConnectionError("store unreachable")


class BrokenDatabase:
    scans = BrokenCollection()
    profiles = BrokenCollection()


def test_cache_serves_until_ttl():
    cache = ResponseCache(60)
    cache.put({"scans_total": 1}, now=100.0)

    assert cache.get(now=159.0) == {"scans_total": 1}
    assert cache.get(now=160.0) is None


def test_cache_ttl_zero_disables():
    cache = ResponseCache(0)
    cache.put({"scans_total": 1}, now=100.0)

    assert cache.get(now=100.0) is None


def test_cache_invalidate():
    cache = ResponseCache(60)
    cache.put("value", now=0.0)
    cache.invalidate()

    assert cache.get(now=1.0) is None


def test_stats_counts(client, db, run):
    user_id = run(create_profile(db))
    run(add_scans(db, user_id, 2))
    run(add_scans(db, user_id, 1, when=datetime.utcnow() - timedelta(days=40)))

    response = client.get("/api/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["scans_total"] == 3
    assert body["scans_today"] == 2
    assert body["scans_hour"] == 2
    assert body["traders"] == 1


def test_stats_are_cached(client, db, run):
    user_id = run(create_profile(db))

    first = client.get("/api/stats").json()
    run(add_scans(db, user_id, 5))
    second = client.get("/api/stats").json()

    assert first == second


def test_stats_outage_returns_zeros(client):
    async def broken():
        return BrokenDatabase()

    app.dependency_overrides[get_optional_database] = broken

    response = client.get("/api/stats")

    assert response.status_code == 200
    assert response.json() == {"scans_total": 0, "scans_today": 0, "scans_hour": 0, "traders": 0}


def test_stats_unavailable_database_returns_zeros(client):
    async def unavailable():
        return None

    app.dependency_overrides[get_optional_database] = unavailable

    response = client.get("/api/stats")

    assert response.status_code == 200
    assert response.json()["traders"] == 0
