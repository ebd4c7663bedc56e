from smaragdus.models import ChatMessage, SearchAnalytics

from conftest import auth_headers


async def test_get_and_update_profile(client, customer):
    h = auth_headers(customer)
    data = (await client.get("/api/profile", headers=h)).json()["data"]
    assert data["email"] == "jane@example.com"
    assert data["preferred_currency"] == "USD"
    assert "password_hash" not in data

    r = await client.put("/api/profile", json={
        "name": "  Jane Smith ", "preferred_currency": "EUR", "language_preference": "ru",
    }, headers=h)
    data = r.json()["data"]
    assert data["name"] == "Jane Smith"
    assert data["preferred_currency"] == "EUR"
    assert data["language_preference"] == "ru"

    assert (await client.put("/api/profile", json={"preferred_currency": "XYZ"}, headers=h)).status_code == 400
    assert (await client.put("/api/profile", json={"language_preference": "de"}, headers=h)).status_code == 400
    assert (await client.put("/api/profile", json={"role": "admin"}, headers=h)).json()["data"]["role"] == "regular_customer"


async def test_profile_requires_auth(client):
    assert (await client.get("/api/profile")).status_code == 401


async def test_preferences(client, customer):
    h = auth_headers(customer)
    data = (await client.get("/api/profile/preferences", headers=h)).json()["data"]
    assert data["email_notifications"] is True
    assert data["marketing_emails"] is False
    assert data["theme"] == "system"

    r = await client.put("/api/profile/preferences", json={"chat_notifications": False, "theme": "dark"}, headers=h)
    data = r.json()["data"]
    assert data["chat_notifications"] is False
    assert data["theme"] == "dark"
    assert data["order_updates"] is True

    assert (await client.put("/api/profile/preferences", json={"theme": "neon"}, headers=h)).status_code == 400


async def test_activity(client, db, customer, make_gemstone):
    gem = await make_gemstone(quantity=3)
    h = auth_headers(customer)
    await client.post("/api/orders", json={"items": [{"gemstone_id": gem.id, "quantity": 1}]}, headers=h)
    db.add_all([
        SearchAnalytics(search_query="emerald", results_count=1, user_id=customer.user_id),
        ChatMessage(user_id=customer.user_id, sender_type="user", content="hi"),
        ChatMessage(user_id=customer.user_id, sender_type="admin", content="hello", is_read=True),
        ChatMessage(user_id=customer.user_id, sender_type="admin", content="anything else?"),
    ])
    await db.commit()

    data = (await client.get("/api/profile/activity", headers=h)).json()["data"]
    assert data["totalOrders"] == 1
    assert len(data["recentOrders"]) == 1
    assert data["searchCount"] == 1
    assert data["chat"] == {"sent": 1, "received": 2, "unread": 1}
