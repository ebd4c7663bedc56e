import pytest

from smaragdus.models import Certification, GemstoneImage
from smaragdus.services.catalog import CatalogFilters, pagination, split_csv
from smaragdus import crud


def test_split_csv():
    assert split_csv(None) == []
    assert split_csv("ruby, emerald,,") == ["ruby", "emerald"]


def test_pagination_flags():
    p = pagination(2, 10, 25)
    assert p == {
        "page": 2, "pageSize": 10, "totalItems": 25, "totalPages": 3,
        "hasNextPage": True, "hasPrevPage": True,
    }
    assert pagination(1, 10, 0)["hasNextPage"] is False


def test_filters_as_dict_drops_empty_values():
    f = CatalogFilters(colors=["green"], min_price=10, in_stock_only=False)
    assert f.as_dict() == {"colors": ["green"], "min_price": 10}


async def test_catalog_filters_and_pagination(client, make_gemstone):
    await make_gemstone(name="emerald", color="green", price_amount=500)
    await make_gemstone(name="ruby", color="red", price_amount=2500)
    await make_gemstone(name="sapphire", color="blue", price_amount=4000, in_stock=False, quantity=0)

    r = await client.get("/api/catalog", params={"gemstone_types": "emerald,ruby"})
    data = r.json()["data"]
    assert {g["name"] for g in data["gemstones"]} == {"emerald", "ruby"}
    assert data["pagination"]["totalItems"] == 2

    r = await client.get("/api/catalog", params={"min_price": 1000, "in_stock_only": "true"})
    assert [g["name"] for g in r.json()["data"]["gemstones"]] == ["ruby"]

    r = await client.get("/api/catalog", params={"sort_by": "price_amount", "sort_direction": "asc", "page_size": 2})
    data = r.json()["data"]
    assert [g["price_amount"] for g in data["gemstones"]] == [500.0, 2500.0]
    assert data["pagination"]["hasNextPage"] is True


async def test_catalog_rejects_inverted_price_range(client):
    r = await client.get("/api/catalog", params={"min_price": 100, "max_price": 10})
    assert r.status_code == 400


async def test_catalog_page_size_capped(client):
    r = await client.get("/api/catalog", params={"page_size": 500})
    assert r.status_code == 400


async def test_certification_and_image_flags(client, db, make_gemstone):
    plain = await make_gemstone()
    rich = await make_gemstone()
    db.add(Certification(gemstone_id=rich.id, certificate_type="GIA", certificate_number="123"))
    db.add(GemstoneImage(gemstone_id=rich.id, image_url="https://cdn.example.com/a.jpg", is_primary=True))
    await db.commit()

    r = await client.get("/api/catalog", params={"has_certification": "true"})
    rows = r.json()["data"]["gemstones"]
    assert [g["id"] for g in rows] == [rich.id]
    assert rows[0]["has_images"] is True
    assert rows[0]["primary_image_url"] == "https://cdn.example.com/a.jpg"

    r = await client.get("/api/catalog", params={"has_images": "false"})
    assert [g["id"] for g in r.json()["data"]["gemstones"]] == [plain.id]


async def test_filter_counts(client, db, make_gemstone):
    origin = await crud.get_or_create_origin(db, "Colombia", "Colombia")
    await db.commit()
    await make_gemstone(name="emerald", origin_id=origin.id)
    await make_gemstone(name="emerald", in_stock=False)
    await make_gemstone(name="ruby", color="red")

    data = (await client.get("/api/catalog/filter-counts")).json()["data"]
    assert data["gemstoneTypes"] == {"emerald": 2, "ruby": 1}
    assert data["origins"] == {"Colombia": 1}
    assert data["inStock"] == 2
    assert data["total"] == 3


async def test_gemstone_detail_with_currency(client, make_gemstone):
    g = await make_gemstone(price_amount=1000, premium_price_amount=900, internal_code="X-1")

    r = await client.get(f"/api/gemstones/{g.id}", params={"currency": "EUR"})
    data = r.json()["data"]
    assert data["serial_number"] == g.serial_number
    assert data["certifications"] == []
    assert "internal_code" not in data
    assert data["display_currency"] == "EUR"
    assert data["display_price"] == pytest.approx(1000 * 0.92 * 1.03)
    assert data["display_premium_price"] == pytest.approx(900 * 0.92 * 1.03)


async def test_gemstone_detail_missing(client):
    r = await client.get("/api/gemstones/nope")
    assert r.status_code == 404
    assert r.json()["error"] == "Gemstone not found"
