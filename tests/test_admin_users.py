import pytest
from sqlalchemy import select

from smaragdus import crud
from smaragdus.errors import ValidationFailed
from smaragdus.models import UserAuditLog
from smaragdus.services import admin_users
from smaragdus.services.admin_users import AuditContext
from smaragdus.services.exports import export_filename

from conftest import auth_headers


async def _logs(db, **where):
    db.expire_all()
    q = select(UserAuditLog).order_by(UserAuditLog.created_at)
    for k, v in where.items():
        q = q.where(getattr(UserAuditLog, k) == v)
    return (await db.execute(q)).scalars().all()


def test_export_filename():
    from datetime import date
    assert export_filename("users", date(2024, 3, 9)) == "users-export-2024-03-09.csv"


async def test_list_filter_and_sort(client, admin, make_user):
    await make_user("premium_customer", name="Zed", email="zed@example.com")
    await make_user("regular_customer", name="Amy", email="amy@example.com", phone="+77010000000")
    h = auth_headers(admin)

    data = (await client.get("/api/admin/users", params={"role": "premium_customer"}, headers=h)).json()["data"]
    assert [u["name"] for u in data["users"]] == ["Zed"]

    data = (await client.get("/api/admin/users", params={"sort_by": "name", "sort_order": "asc"}, headers=h)).json()["data"]
    assert [u["name"] for u in data["users"]] == ["Amy", "Site Admin", "Zed"]
    assert data["total"] == 3
    assert data["total_pages"] == 1

    data = (await client.get("/api/admin/users", params={"search": "7701"}, headers=h)).json()["data"]
    assert [u["email"] for u in data["users"]] == ["amy@example.com"]

    r = await client.get("/api/admin/users", params={"limit": 101}, headers=h)
    assert r.status_code == 400


async def test_create_user_with_password_is_audited(client, db, admin):
    r = await client.post("/api/admin/users", json={
        "email": "New@Example.com", "name": "New Person", "password": "Topaz1234", "role": "premium_customer",
    }, headers={**auth_headers(admin), "X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "pytest"})
    assert r.status_code == 201
    user = r.json()["data"]
    assert user["email"] == "new@example.com"

    logs = await _logs(db, target_user_id=user["user_id"])
    assert [l.action for l in logs] == ["create"]
    assert logs[0].ip_address == "203.0.113.9"
    assert logs[0].user_agent == "pytest"
    assert logs[0].changes["after"]["role"] == "premium_customer"


async def test_create_user_needs_password_or_invitation(client, admin):
    r = await client.post("/api/admin/users", json={"email": "x@example.com", "name": "Xavier"},
                          headers=auth_headers(admin))
    assert r.status_code == 400


async def test_create_user_duplicate_email(client, admin, customer):
    r = await client.post("/api/admin/users", json={
        "email": customer.email, "name": "Dup", "password": "Topaz1234",
    }, headers=auth_headers(admin))
    assert r.status_code == 409


async def test_invitation_sends_reset_email(client, admin, outbox):
    r = await client.post("/api/admin/users", json={
        "email": "invitee@example.com", "name": "Invitee", "send_invitation": True,
    }, headers=auth_headers(admin))
    assert r.status_code == 201
    assert r.json()["message"] == "Invitation sent"
    sent = outbox.of_type("password_reset")
    assert len(sent) == 1
    assert sent[0]["to"] == ["invitee@example.com"]
    assert "/reset-password?token=" in sent[0]["html"]


async def test_update_role_change_is_audited(client, db, admin, customer):
    r = await client.put(f"/api/admin/users/{customer.user_id}", json={
        "role": "premium_customer", "discount_percentage": 5,
    }, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["data"]["role"] == "premium_customer"

    logs = await _logs(db, target_user_id=customer.user_id)
    assert logs[-1].action == "role_change"
    assert logs[-1].changes["before"]["role"] == "regular_customer"
    assert logs[-1].changes["after"]["discount_percentage"] == 5


async def test_update_plain_fields_is_update_action(client, db, admin, customer):
    await client.put(f"/api/admin/users/{customer.user_id}", json={"name": "Jane Roe"}, headers=auth_headers(admin))
    logs = await _logs(db, target_user_id=customer.user_id)
    assert [l.action for l in logs] == ["update"]
    assert logs[0].changes == {"before": {"name": "Jane Doe"}, "after": {"name": "Jane Roe"}}


async def test_discount_out_of_range(client, admin, customer):
    r = await client.put(f"/api/admin/users/{customer.user_id}", json={"discount_percentage": 150},
                         headers=auth_headers(admin))
    assert r.status_code == 400


async def test_admin_cannot_change_own_role_or_delete_self(client, admin):
    h = auth_headers(admin)
    r = await client.put(f"/api/admin/users/{admin.user_id}", json={"role": "regular_customer"}, headers=h)
    assert r.status_code == 400
    r = await client.delete(f"/api/admin/users/{admin.user_id}", headers=h)
    assert r.status_code == 400


async def test_rejected_self_suspend_writes_nothing(client, db, admin):
    h = auth_headers(admin)
    r = await client.put(f"/api/admin/users/{admin.user_id}",
                         json={"name": "Renamed Admin", "is_active": False}, headers=h)
    assert r.status_code == 400
    data = (await client.get(f"/api/admin/users/{admin.user_id}", headers=h)).json()["data"]
    assert data["name"] == "Site Admin"
    assert data["is_active"] is True
    assert await _logs(db, target_user_id=admin.user_id) == []


async def test_suspend_with_field_update(client, db, admin, customer):
    r = await client.put(f"/api/admin/users/{customer.user_id}",
                         json={"name": "Jane Roe", "is_active": False}, headers=auth_headers(admin))
    data = r.json()["data"]
    assert data["name"] == "Jane Roe"
    assert data["is_active"] is False
    logs = await _logs(db, target_user_id=customer.user_id)
    assert sorted(l.action for l in logs) == ["suspend", "update"]


async def test_last_admin_is_protected(client, db, admin, make_user):
    other_admin = await make_user("admin")
    r = await client.delete(f"/api/admin/users/{admin.user_id}", headers=auth_headers(other_admin))
    assert r.status_code == 200
    db.expire_all()
    assert await crud.get_user_by_id(db, admin.user_id) is None

    ctx = AuditContext(admin_user_id="maintenance")
    with pytest.raises(ValidationFailed, match="last admin"):
        await admin_users.delete_user(db, ctx, other_admin.user_id)
    with pytest.raises(ValidationFailed, match="last admin"):
        await admin_users.change_role(db, ctx, other_admin.user_id, "regular_customer")


async def test_delete_is_audited(client, db, admin, customer):
    r = await client.delete(f"/api/admin/users/{customer.user_id}", headers=auth_headers(admin))
    assert r.status_code == 200
    logs = await _logs(db, target_user_id=customer.user_id)
    assert logs[-1].action == "delete"
    assert logs[-1].changes["after"] is None


async def test_bulk_operations(client, db, admin, make_user):
    u1 = await make_user()
    u2 = await make_user()
    h = auth_headers(admin)

    r = await client.post("/api/admin/users/bulk", json={
        "user_ids": [u1.user_id, u2.user_id, admin.user_id, "missing"], "operation": "suspend",
    }, headers=h)
    data = r.json()["data"]
    assert data["success"] == 2
    assert data["failed"] == 2
    assert {e["user_id"] for e in data["errors"]} == {admin.user_id, "missing"}

    db.expire_all()
    assert (await crud.get_user_by_id(db, u1.user_id)).is_active is False
    assert [l.action for l in await _logs(db, target_user_id=u1.user_id)] == ["suspend"]

    r = await client.post("/api/admin/users/bulk", json={
        "user_ids": [u1.user_id], "operation": "role_change",
    }, headers=h)
    assert r.json()["data"]["errors"][0]["error"] == "Role is required for role_change operation"


async def test_suspended_user_loses_access(client, admin, customer):
    await client.post("/api/admin/users/bulk", json={"user_ids": [customer.user_id], "operation": "suspend"},
                      headers=auth_headers(admin))
    r = await client.get("/api/cart", headers=auth_headers(customer))
    assert r.status_code == 403


async def test_statistics(client, admin, make_user):
    await make_user("premium_customer")
    await make_user("regular_customer", is_active=False)
    data = (await client.get("/api/admin/users/statistics", headers=auth_headers(admin))).json()["data"]
    assert data == {
        "totalUsers": 3,
        "activeUsers": 2,
        "premiumUsers": 1,
        "admins": 1,
        "newUsersThisMonth": 3,
        "regularCustomers": 1,
    }
    same = (await client.get("/api/admin/statistics/users", headers=auth_headers(admin))).json()["data"]
    assert same == data


async def test_export_csv(client, admin, customer):
    r = await client.get("/api/admin/users/export", params={"role": "regular_customer"}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert f'filename="{export_filename("users")}"' in r.headers["content-disposition"]
    lines = r.text.strip().split("\n")
    assert lines[0] == (
        '"ID","Name","Email","Phone","Role","Preferred Currency",'
        '"Discount %","Language","Created At","Last Sign In"'
    )
    assert len(lines) == 2
    assert f'"{customer.user_id}","Jane Doe","jane@example.com",""' in lines[1]


async def test_reset_password_and_audit_logs(client, db, admin, customer, outbox):
    h = auth_headers(admin)
    r = await client.post(f"/api/admin/users/{customer.user_id}/reset-password", headers=h)
    assert r.status_code == 200
    assert outbox.of_type("password_reset")[0]["to"] == [customer.email]

    data = (await client.get(f"/api/admin/users/{customer.user_id}/audit-logs", headers=h)).json()["data"]
    assert [l["action"] for l in data["logs"]] == ["password_reset"]

    data = (await client.get("/api/admin/users/audit-logs", params={"action": "password_reset"}, headers=h)).json()["data"]
    assert data["total"] == 1
    r = await client.get("/api/admin/users/audit-logs", params={"action": "explode"}, headers=h)
    assert r.status_code == 400


async def test_get_user_detail(client, admin, customer):
    data = (await client.get(f"/api/admin/users/{customer.user_id}", headers=auth_headers(admin))).json()["data"]
    assert data["order_count"] == 0
    assert data["preferences"]["chat_notifications"] is True
    r = await client.get("/api/admin/users/missing", headers=auth_headers(admin))
    assert r.status_code == 404
