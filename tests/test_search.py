from datetime import timedelta

from sqlalchemy import select

from smaragdus import crud
from smaragdus.db import utcnow
from smaragdus.models import SearchAnalytics
from smaragdus.services import search, search_analytics
from smaragdus.services.search import correct_tokens, score_document, tokenize

from conftest import auth_headers, PASSWORD


def test_tokenize():
    assert tokenize("  Green, Emerald ") == ["green", "emerald"]
    assert tokenize(None) == []


def test_every_token_must_match():
    doc = {"serial_number": "sv-1", "name": "emerald", "color": "green", "cut": "oval",
           "clarity": "vs1", "origin": "colombia", "description": ""}
    assert score_document(["emerald", "green"], doc) == 8
    assert score_document(["emerald", "blue"], doc) == 0
    assert score_document(["sv-1"], doc) == 10
    assert score_document(["colom"], doc) == 1


def test_correct_tokens_uses_vocabulary():
    docs = [{"serial_number": "sv-1", "name": "emerald", "color": "green", "cut": "oval",
             "clarity": "vs1", "origin": "", "description": ""}]
    assert correct_tokens(["emrald"], docs) == ["emerald"]
    assert correct_tokens(["green"], docs) is None


def test_fuzzy_suggestions():
    out = search.get_fuzzy_suggestions("saphire")
    assert out[0]["suggestion"] == "sapphire"


async def test_search_ranks_serial_match_first(client, make_gemstone):
    await make_gemstone(serial_number="SV-RU-0001", name="ruby", color="red")
    await make_gemstone(serial_number="SV-EM-0001", name="emerald", color="green")

    r = await client.post("/api/search", json={"query": "sv-ru-0001"})
    data = r.json()["data"]
    assert [g["serial_number"] for g in data["results"]] == ["SV-RU-0001"]
    assert data["usedFuzzySearch"] is False


async def test_search_falls_back_to_fuzzy(client, make_gemstone):
    await make_gemstone(name="sapphire", color="blue")
    await make_gemstone(name="ruby", color="red")

    r = await client.post("/api/search", json={"query": "saphire"})
    data = r.json()["data"]
    assert data["usedFuzzySearch"] is True
    assert [g["name"] for g in data["results"]] == ["sapphire"]


async def test_search_no_results_is_not_fuzzy(client, make_gemstone):
    await make_gemstone(name="ruby", color="red")
    r = await client.get("/api/search", params={"query": "xyzzyqq"})
    data = r.json()["data"]
    assert data["results"] == []
    assert data["usedFuzzySearch"] is False


async def test_search_applies_filters(client, make_gemstone):
    await make_gemstone(name="emerald", price_amount=100)
    await make_gemstone(name="emerald", price_amount=5000)

    r = await client.post("/api/search", json={"query": "emerald", "filters": {"minPrice": 1000}})
    rows = r.json()["data"]["results"]
    assert [g["price_amount"] for g in rows] == [5000.0]


async def test_search_rejects_bad_page_size(client):
    r = await client.post("/api/search", json={"query": "ruby", "pageSize": 101})
    assert r.status_code == 400


async def test_search_is_tracked(client, db, customer, make_gemstone):
    await make_gemstone(name="ruby", color="red")
    r = await client.post("/api/search", json={"query": "  Ruby ", "sessionId": "s-1"}, headers=auth_headers(customer))
    assert r.status_code == 200

    rows = (await db.execute(select(SearchAnalytics))).scalars().all()
    assert len(rows) == 1
    assert rows[0].search_query == "ruby"
    assert rows[0].results_count == 1
    assert rows[0].user_id == customer.user_id
    assert rows[0].session_id == "s-1"


async def test_empty_query_is_not_tracked(client, db):
    await client.post("/api/search", json={})
    rows = (await db.execute(select(SearchAnalytics))).scalars().all()
    assert rows == []


async def test_suggestions(client, db, make_gemstone):
    origin = await crud.get_or_create_origin(db, "Sri Lanka")
    await db.commit()
    await make_gemstone(serial_number="SV-SA-0001", name="sapphire", color="blue", origin_id=origin.id)

    r = await client.get("/api/search/suggestions", params={"query": "sap"})
    suggestions = r.json()["data"]["suggestions"]
    assert suggestions[0] == {"suggestion": "sapphire", "category": "type", "relevance": 1.0}

    r = await client.get("/api/search/suggestions", params={"query": "lanka"})
    assert {"suggestion": "Sri Lanka", "category": "origin", "relevance": 0.8} in r.json()["data"]["suggestions"]


async def test_analytics_requires_admin(client, customer):
    r = await client.get("/api/search/analytics", headers=auth_headers(customer))
    assert r.status_code == 403


async def test_analytics_metrics(client, db, admin):
    await search_analytics.record_search(db, "ruby", 3, False)
    await search_analytics.record_search(db, "Ruby", 1, False)
    await search_analytics.record_search(db, "emrald", 0, False)
    await search_analytics.record_search(db, "saphire", 2, True)

    r = await client.get("/api/search/analytics", params={"daysBack": 7}, headers=auth_headers(admin))
    data = r.json()["data"]
    assert data["totalSearches"] == 4
    assert data["uniqueQueries"] == 3
    assert data["zeroResultPercentage"] == 25
    assert data["fuzzySearchUsage"] == 25
    assert data["topQueries"][0]["search_query"] == "ruby"
    assert data["zeroResultQueries"] == [{"query": "emrald", "count": 1}]


async def test_track_endpoint_and_history(client, db, customer):
    r = await client.post("/api/search/analytics", json={"query": "emerald", "resultsCount": 4},
                          headers=auth_headers(customer))
    assert r.status_code == 200

    r = await client.get("/api/search/history", headers=auth_headers(customer))
    history = r.json()["data"]["history"]
    assert len(history) == 1
    assert history[0]["query"] == "emerald"
    assert history[0]["resultsCount"] == 4


async def test_revoked_token_does_not_attribute_search(client, db, customer, make_gemstone):
    await make_gemstone(name="ruby", color="red")
    r = await client.post("/api/auth/login", json={"email": customer.email, "password": PASSWORD})
    headers = {"Authorization": f"Bearer {r.json()['data']['access_token']}"}
    await client.post("/api/auth/logout", headers=headers)

    r = await client.post("/api/search", json={"query": "ruby"}, headers=headers)
    assert r.status_code == 200
    rows = (await db.execute(select(SearchAnalytics))).scalars().all()
    assert len(rows) == 1
    assert rows[0].user_id is None


async def _tracked_at(db, when, results_count, fuzzy=False):
    db.add(SearchAnalytics(search_query="ruby", results_count=results_count,
                           used_fuzzy_search=fuzzy, created_at=when))
    await db.commit()


async def test_analytics_trends_buckets(client, db, admin):
    base = (utcnow() - timedelta(days=2)).replace(hour=10, minute=0, second=0, microsecond=0)
    await _tracked_at(db, base + timedelta(minutes=5), 3)
    await _tracked_at(db, base + timedelta(minutes=50), 0)
    await _tracked_at(db, base + timedelta(minutes=70), 2, fuzzy=True)
    h = auth_headers(admin)

    trends = (await client.get("/api/search/analytics/trends", headers=h)).json()["data"]["trends"]
    assert trends == [{
        "time_bucket": base.replace(hour=0).isoformat(),
        "search_count": 3,
        "avg_results": 1.67,
        "zero_result_count": 1,
        "fuzzy_usage_count": 1,
    }]

    r = await client.get("/api/search/analytics/trends", params={"bucket": "hour"}, headers=h)
    trends = r.json()["data"]["trends"]
    assert [(t["time_bucket"], t["search_count"]) for t in trends] == [
        (base.isoformat(), 2),
        ((base + timedelta(hours=1)).isoformat(), 1),
    ]

    r = await client.get("/api/search/analytics/trends", params={"bucket": "week"}, headers=h)
    week_start = base.replace(hour=0) - timedelta(days=base.weekday())
    assert [t["time_bucket"] for t in r.json()["data"]["trends"]] == [week_start.isoformat()]

    r = await client.get("/api/search/analytics/trends", params={"bucket": "month"}, headers=h)
    assert r.status_code == 400
    r = await client.get("/api/search/analytics/trends", params={"daysBack": 1}, headers=h)
    assert r.json()["data"]["trends"] == []


async def test_fuzzy_suggestions_endpoint(client):
    r = await client.get("/api/search/fuzzy-suggestions", params={"query": "saphire", "limit": 3})
    assert r.status_code == 200
    suggestions = r.json()["data"]["suggestions"]
    assert suggestions[0]["suggestion"] == "sapphire"
    assert len(suggestions) <= 3

    r = await client.get("/api/search/fuzzy-suggestions", params={"query": ""})
    assert r.status_code == 400
