from sqlalchemy import select

from smaragdus import config
from smaragdus.models import ContactMessage
from smaragdus.services import contact

from conftest import auth_headers

FORM = {
    "name": "Ivan Petrov",
    "email": "Ivan@Example.com",
    "phone": "+7 701 555 0101",
    "subject": "Wholesale sapphires",
    "message": "We are interested in buying a parcel of Ceylon sapphires.",
    "inquiry_type": "wholesale",
    "preferred_contact_method": "whatsapp",
    "urgency_level": "high",
}


def test_response_message_by_urgency_and_locale():
    assert "within 24 hours" in contact.response_message("en", "low")
    assert "as soon as possible" in contact.response_message("en", "urgent")
    assert contact.response_message("ru", "high").startswith("Спасибо")
    assert contact.response_message("de", "medium") == contact.response_message("en", "medium")


async def test_contact_validation(client):
    r = await client.post("/api/contact", json={**FORM, "phone": "12345"})
    assert r.status_code == 400
    assert r.json()["details"][0]["field"] == "phone"

    r = await client.post("/api/contact", json={**FORM, "message": "too short"})
    assert r.status_code == 400

    r = await client.post("/api/contact", json={**FORM, "inquiry_type": "gossip"})
    assert r.status_code == 400


async def test_padding_does_not_satisfy_minimum_length(client, db):
    r = await client.post("/api/contact", json={**FORM, "message": "  short message  " + " " * 20})
    assert r.status_code == 400
    assert r.json()["details"][0]["field"] == "message"
    r = await client.post("/api/contact", json={**FORM, "subject": "   Hi    "})
    assert r.status_code == 400
    assert (await db.execute(select(ContactMessage))).scalars().all() == []

    r = await client.post("/api/contact", json={**FORM, "name": "  Ivan Petrov  "})
    assert r.status_code == 201
    stored = (await db.execute(select(ContactMessage))).scalars().one()
    assert stored.name == "Ivan Petrov"


async def test_submit_stores_request_context(client, db):
    r = await client.post("/api/contact", json={**FORM, "phone": "  "}, headers={
        "X-Forwarded-For": "203.0.113.7, 10.0.0.1",
        "User-Agent": "pytest-agent",
        "Referer": "https://smaragdusviridi.com/contact",
    })
    assert r.status_code == 201
    body = r.json()
    assert body["message"] == contact.response_message("en", "high")

    msg = (await db.execute(select(ContactMessage).where(ContactMessage.id == body["data"]["id"]))).scalar_one()
    assert msg.email == "ivan@example.com"
    assert msg.phone is None
    assert msg.status == "unread"
    assert msg.ip_address == "203.0.113.7"
    assert msg.user_agent == "pytest-agent"
    assert msg.referrer_url == "https://smaragdusviridi.com/contact"


async def test_submit_sends_admin_alert_and_auto_reply(client, admin, outbox):
    r = await client.post("/api/contact", json={**FORM, "locale": "ru"})
    assert r.status_code == 201
    assert r.json()["message"] == contact.response_message("ru", "high")

    alert = outbox.of_type("contact_admin_notification")[0]
    assert alert["to"] == [admin.email]
    assert alert["subject"].startswith("[ВЫСОКИЙ]")
    assert "Оптовые закупки" in alert["html"]

    reply = outbox.of_type("contact_auto_response")[0]
    assert reply["to"] == ["ivan@example.com"]


async def test_admin_alert_falls_back_without_admins(client, outbox):
    await client.post("/api/contact", json=FORM)
    alert = outbox.of_type("contact_admin_notification")[0]
    assert alert["to"] == [config.ADMIN_FALLBACK_EMAIL]
    assert alert["subject"] == "[HIGH] New Contact Form: Wholesale sapphires - Smaragdus Viridi"


async def test_admin_list_and_update(client, admin, customer):
    first = (await client.post("/api/contact", json=FORM)).json()["data"]["id"]
    await client.post("/api/contact", json={**FORM, "urgency_level": "low"})
    h = auth_headers(admin)

    assert (await client.get("/api/admin/contact", headers=auth_headers(customer))).status_code == 403
    data = (await client.get("/api/admin/contact", headers=h)).json()["data"]
    assert data["total"] == 2

    r = await client.put(f"/api/admin/contact/{first}", json={"status": "in_progress", "admin_notes": "Called back"}, headers=h)
    assert r.json()["data"]["status"] == "in_progress"

    r = await client.put(f"/api/admin/contact/{first}", json={"status": "resolved"}, headers=h)
    data = r.json()["data"]
    assert data["responded_by"] == admin.user_id
    assert data["responded_at"] is not None
    assert data["admin_notes"] == "Called back"

    data = (await client.get("/api/admin/contact", params={"status": "resolved"}, headers=h)).json()["data"]
    assert [m["id"] for m in data["messages"]] == [first]

    await client.put(f"/api/admin/contact/{first}", json={"status": "archived"}, headers=h)
    r = await client.put(f"/api/admin/contact/{first}", json={"status": "read"}, headers=h)
    assert r.status_code == 400

    assert (await client.put(f"/api/admin/contact/{first}", json={"status": "done"}, headers=h)).status_code == 400
    assert (await client.put("/api/admin/contact/missing", json={"status": "read"}, headers=h)).status_code == 404


async def test_spam_hidden_by_default(client, admin):
    msg_id = (await client.post("/api/contact", json=FORM)).json()["data"]["id"]
    h = auth_headers(admin)
    await client.put(f"/api/admin/contact/{msg_id}", json={"is_spam": True}, headers=h)
    assert (await client.get("/api/admin/contact", headers=h)).json()["data"]["total"] == 0
    data = (await client.get("/api/admin/contact", params={"include_spam": True}, headers=h)).json()["data"]
    assert data["messages"][0]["is_spam"] is True
