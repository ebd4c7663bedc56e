from conftest import auth_headers


async def _order(client, user, gemstone, quantity):
    r = await client.post("/api/orders", json={
        "payment_type": "bank_transfer", "items": [{"gemstone_id": gemstone.id, "quantity": quantity}],
    }, headers=auth_headers(user))
    assert r.status_code == 201
    return r.json()["data"]


async def test_dashboard(client, admin, customer, make_gemstone):
    ruby = await make_gemstone(name="ruby", price_amount=1000, quantity=10)
    await make_gemstone(name="sapphire", price_amount=2000, quantity=0, in_stock=False)
    await _order(client, customer, ruby, 2)
    cancelled = await _order(client, customer, ruby, 1)
    await client.post(f"/api/orders/{cancelled['id']}/cancel", headers=auth_headers(customer))

    assert (await client.get("/api/admin/statistics", headers=auth_headers(customer))).status_code == 403
    data = (await client.get("/api/admin/statistics", headers=auth_headers(admin))).json()["data"]
    assert data["totalGemstones"] == 2
    assert data["inStock"] == 1
    assert data["outOfStock"] == 1
    assert data["avgGemstonePrice"] == 1500.0
    assert data["activeUsers"] == 2
    assert data["totalOrders"] == 2
    assert data["totalRevenue"] == 2000.0
    assert data["ordersByStatus"]["pending"] == 1
    assert data["ordersByStatus"]["cancelled"] == 1
    assert data["ordersByStatus"]["shipped"] == 0
    assert data["topSelling"] == [
        {"gemstone_id": ruby.id, "serial_number": ruby.serial_number, "name": "ruby", "sold": 2},
    ]
    assert len(data["recentOrders"]) == 2
    assert len(data["recentGemstones"]) == 2


async def test_sales_report(client, admin, customer, make_gemstone):
    gem = await make_gemstone(price_amount=750, quantity=5)
    await _order(client, customer, gem, 2)
    await _order(client, customer, gem, 1)

    data = (await client.get("/api/admin/statistics/sales", params={"days": 7}, headers=auth_headers(admin))).json()["data"]
    assert data["days"] == 7
    assert len(data["daily"]) == 7
    assert data["totalOrders"] == 2
    assert data["totalRevenue"] == 2250.0
    assert data["averageOrderValue"] == 1125.0
    assert data["daily"][-1] == {"date": data["daily"][-1]["date"], "revenue": 2250.0, "orders": 2}
    assert all(d["orders"] == 0 for d in data["daily"][:-1])

    r = await client.get("/api/admin/statistics/sales", params={"days": 0}, headers=auth_headers(admin))
    assert r.status_code == 400
