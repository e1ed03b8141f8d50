from sqlalchemy import update

from app.models.enums import ListingStatus
from app.models.location import Location
from fixtures_seed import envelope, seed_listing, seed_plan, seed_subscription

ADMIN = {"X-Internal-Admin-Key": "test-internal"}


async def _host_with_listings(db, n=1, *, max_listings=2, **listing_kwargs):
    await seed_plan(db, max_listings=max_listings)
    sub = await seed_subscription(db, max_listings=max_listings)
    listings = [await seed_listing(db, sub.host_id, **listing_kwargs) for _ in range(n)]
    await db.commit()
    return sub, [listing.id for listing in listings]


async def test_health(client):
    r = await client.get("/v1/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


async def test_billing_event_is_accepted_and_buffered(client):
    r = await client.post("/v1/billing/events", json=envelope("invoice.paid", {"id": "in_1"}, event_id="evt_api_1"))

    assert r.status_code == 202
    body = r.json()
    assert body["external_event_id"] == "evt_api_1"
    assert body["event_type"] == "invoice.paid"
    assert body["inbox_id"].startswith("ibx")

    stats = await client.get("/v1/internal/billing-events/stats", headers=ADMIN)
    assert stats.status_code == 200
    assert stats.json()["pending"] == 1


async def test_billing_event_without_type_is_rejected(client):
    r = await client.post("/v1/billing/events", json={"id": "evt_x", "data": {}})
    assert r.status_code == 422


async def test_publish_and_slot_endpoints(client, db):
    _, (listing_id,) = await _host_with_listings(db)

    r = await client.post(f"/v1/listings/{listing_id}/publish")
    assert r.status_code == 200
    assert r.json()["outcome"] == "published"

    slot = await client.get(f"/v1/listings/{listing_id}/slot")
    assert slot.status_code == 200
    assert slot.json()["status"] == "ACTIVE"
    assert slot.json()["renewal_count"] == 0

    opted_out = await client.put(f"/v1/listings/{listing_id}/slot/do-not-renew", json={"do_not_renew": True})
    assert opted_out.status_code == 200
    assert opted_out.json()["status"] == "DO_NOT_RENEW"
    assert (await client.get(f"/v1/listings/{listing_id}/slot")).json()["status"] == "DO_NOT_RENEW"

    r = await client.post(f"/v1/listings/{listing_id}/unpublish")
    assert r.status_code == 200
    assert r.json() == {"outcome": "unpublished", "listing_id": listing_id, "slot_released": True}

    assert (await client.get(f"/v1/listings/{listing_id}/slot")).status_code == 404
    missing = await client.put(f"/v1/listings/{listing_id}/slot/do-not-renew", json={"do_not_renew": True})
    assert missing.status_code == 404


async def test_publish_over_limit_returns_conflict(client, db):
    _, (first, second) = await _host_with_listings(db, 2, max_listings=1)

    assert (await client.post(f"/v1/listings/{first}/publish")).status_code == 200
    r = await client.post(f"/v1/listings/{second}/publish")

    assert r.status_code == 409
    assert r.json()["outcome"] == "declined"
    assert r.json()["reason"] == "limit_reached"


async def test_publish_errors(client, db):
    _, (draft,) = await _host_with_listings(db, status=ListingStatus.DRAFT)

    assert (await client.post(f"/v1/listings/{draft}/publish")).status_code == 400
    assert (await client.post("/v1/listings/lst_missing/publish")).status_code == 404
    assert (await client.post("/v1/listings/lst_missing/unpublish")).status_code == 404


async def test_internal_endpoints_require_admin_key(client):
    assert (await client.get("/v1/internal/billing-events/stats")).status_code == 403
    wrong = {"X-Internal-Admin-Key": "nope"}
    assert (await client.post("/v1/internal/sweeps/SLOT_EXPIRY", headers=wrong)).status_code == 403
    assert (await client.post("/v1/internal/locations/reconcile")).status_code == 403


async def test_internal_dispatch_with_empty_inbox(client):
    r = await client.post("/v1/internal/billing-events/dispatch", headers=ADMIN)
    assert r.status_code == 200
    assert r.json() == {"dispatched": 0}


async def test_internal_redrive(client):
    r = await client.post("/v1/internal/billing-events/redrive", headers=ADMIN, json={"ids": ["ibx_missing"]})
    assert r.status_code == 200
    assert r.json() == {"redriven": 0}


async def test_internal_sweep(client):
    r = await client.post("/v1/internal/sweeps/expiry_warning", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["mode"] == "EXPIRY_WARNING"
    assert r.json()["failures"] == []

    assert (await client.post("/v1/internal/sweeps/bogus", headers=ADMIN)).status_code == 400


async def test_internal_reconcile_fixes_counter_drift(client, db):
    _, (listing_id,) = await _host_with_listings(db)
    assert (await client.post(f"/v1/listings/{listing_id}/publish")).status_code == 200

    await db.execute(update(Location).where(Location.id == "ChIJ-zlatibor").values(listings_count=5))
    await db.commit()

    r = await client.post("/v1/internal/locations/reconcile", headers=ADMIN)

    assert r.status_code == 200
    assert r.json()["locations_checked"] == 1
    assert r.json()["corrections"] == {"ChIJ-zlatibor": [5, 1]}

    again = await client.post("/v1/internal/locations/reconcile", headers=ADMIN)
    assert again.json()["corrections"] == {}
