from datetime import timedelta

from smaragdus import crud
from smaragdus.db import utcnow
from smaragdus.models import ChatMessage
from smaragdus.services.notifications import find_unattended_messages, format_wait_time

from conftest import auth_headers, PASSWORD


def test_format_wait_time():
    assert format_wait_time(45) == "45 minutes"
    assert format_wait_time(60) == "1 hours"
    assert format_wait_time(185) == "3 hours"


async def _old_message(db, user_id, sender_type, minutes_ago, content="Hello?"):
    msg = ChatMessage(user_id=user_id, sender_type=sender_type, content=content,
                      created_at=utcnow() - timedelta(minutes=minutes_ago))
    db.add(msg)
    await db.commit()
    return msg


async def test_user_message_notifies_admins(client, admin, customer, outbox):
    r = await client.post("/api/chat", json={"content": "  Is the Muzo emerald still available?  "},
                          headers=auth_headers(customer))
    assert r.status_code == 201
    msg = r.json()["data"]
    assert msg["sender_type"] == "user"
    assert msg["content"] == "Is the Muzo emerald still available?"

    sent = outbox.of_type("new_user_message_to_admin")
    assert len(sent) == 1
    assert sent[0]["to"] == [admin.email]
    assert "Jane Doe" in sent[0]["subject"]
    assert sent[0]["tags"]["chat_message_id"] == msg["id"]


async def test_chat_content_limits(client, customer):
    h = auth_headers(customer)
    assert (await client.post("/api/chat", json={"content": ""}, headers=h)).status_code == 400
    assert (await client.post("/api/chat", json={"content": "x" * 2001}, headers=h)).status_code == 400


async def test_list_messages_newest_first_with_has_more(client, db, customer):
    for i in range(3):
        await _old_message(db, customer.user_id, "user", 10 - i, content=f"m{i}")
    data = (await client.get("/api/chat", params={"limit": 2}, headers=auth_headers(customer))).json()["data"]
    assert [m["content"] for m in data["messages"]] == ["m2", "m1"]
    assert data["hasMore"] is True

    data = (await client.get("/api/chat", params={"limit": 2, "offset": 2}, headers=auth_headers(customer))).json()["data"]
    assert [m["content"] for m in data["messages"]] == ["m0"]
    assert data["hasMore"] is False


async def test_admin_reply_respects_preferences(client, db, admin, customer, outbox):
    h = auth_headers(admin)
    r = await client.post("/api/admin/chat/send", json={"user_id": customer.user_id, "content": "Yes, it is."}, headers=h)
    assert r.status_code == 201
    sent = outbox.of_type("admin_response_to_user")
    assert len(sent) == 1
    assert sent[0]["to"] == [customer.email]
    assert "Site Admin" in sent[0]["html"]

    await crud.update_preferences(db, customer.user_id, {"chat_notifications": False})
    await client.post("/api/admin/chat/send", json={"user_id": customer.user_id, "content": "Anything else?"}, headers=h)
    assert len(outbox.of_type("admin_response_to_user")) == 1


async def test_admin_send_to_unknown_user(client, admin):
    r = await client.post("/api/admin/chat/send", json={"user_id": "missing", "content": "hi"},
                          headers=auth_headers(admin))
    assert r.status_code == 404


async def test_read_receipts(client, db, admin, customer):
    await _old_message(db, customer.user_id, "user", 5)
    await _old_message(db, customer.user_id, "admin", 4)
    await _old_message(db, customer.user_id, "admin", 3)

    data = (await client.get("/api/admin/chat/conversations", headers=auth_headers(admin))).json()["data"]
    conv = data["conversations"][0]
    assert conv["user_email"] == customer.email
    assert conv["unread_count"] == 1
    assert conv["last_message"]["sender_type"] == "admin"

    r = await client.post("/api/chat/read", headers=auth_headers(customer))
    assert r.json()["data"] == {"marked": 2}

    data = (await client.get(f"/api/admin/chat/{customer.user_id}", headers=auth_headers(admin))).json()["data"]
    assert len(data["messages"]) == 3
    data = (await client.get("/api/admin/chat/conversations", headers=auth_headers(admin))).json()["data"]
    assert data["conversations"][0]["unread_count"] == 0


async def test_find_unattended_messages(db, customer, make_user):
    other = await make_user()
    answered = await make_user()
    await _old_message(db, customer.user_id, "user", 90)
    await _old_message(db, customer.user_id, "user", 45)
    await _old_message(db, other.user_id, "user", 5)
    await _old_message(db, answered.user_id, "user", 60)
    await _old_message(db, answered.user_id, "admin", 50)

    found = await find_unattended_messages(db, 30)
    assert [m.user_id for m in found] == [customer.user_id]
    assert found[0].content == "Hello?"
    assert (utcnow() - found[0].created_at) < timedelta(minutes=50)


async def test_check_unattended_with_cron_key(client, db, admin, customer, outbox):
    await _old_message(db, customer.user_id, "user", 125)
    r = await client.post("/api/admin/chat/check-unattended", headers={"Authorization": "Bearer cron-secret"})
    assert r.status_code == 200
    assert r.json()["data"] == {"unattended": 1, "alertsSent": 1}
    alert = outbox.of_type("unattended_message_alert")[0]
    assert "2 hours" in alert["subject"]
    assert alert["to"] == [admin.email]


async def test_check_unattended_auth(client, customer, admin):
    r = await client.get("/api/admin/chat/check-unattended", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401
    r = await client.get("/api/admin/chat/check-unattended", headers=auth_headers(customer))
    assert r.status_code == 403
    r = await client.get("/api/admin/chat/check-unattended", headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["message"] == "Email notifications disabled"


async def test_check_unattended_rejects_logged_out_admin(client, admin):
    r = await client.post("/api/auth/login", json={"email": admin.email, "password": PASSWORD})
    headers = {"Authorization": f"Bearer {r.json()['data']['access_token']}"}
    assert (await client.post("/api/auth/logout", headers=headers)).status_code == 200
    r = await client.post("/api/admin/chat/check-unattended", headers=headers)
    assert r.status_code == 401
