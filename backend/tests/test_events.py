"""
Tests for event and ticket type endpoints.
"""

import pytest
from datetime import datetime, timezone, timedelta
from httpx import AsyncClient

from boxoffice.db.base import utcnow
from boxoffice.models.event import EVENT_DRAFT
from boxoffice.services import checkout_service
from boxoffice.services.checkout_service import CartLine


def event_payload(**overrides) -> dict:
    payload = {
        "title": "Python Conference 2026",
        "description": "Annual Python gathering",
        "venue_name": "Convention Center",
        "city": "Porto",
        "starts_at": (datetime.now(timezone.utc) + timedelta(days=30)).isoformat(),
        "ticket_types": [
            {"name": "General", "price": "40.00", "quantity_available": 500},
            {"name": "VIP", "price": "120.00", "quantity_available": 20, "max_per_order": 2},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_create_event_starts_as_draft(client: AsyncClient, organizer_headers):
    response = await client.post("/api/v1/events/", json=event_payload(), headers=organizer_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "draft"
    assert data["organizer_id"] == "org-1"
    assert [tt["name"] for tt in data["ticket_types"]] == ["General", "VIP"]
    assert data["ticket_types"][0]["available_remaining"] == 500


@pytest.mark.asyncio
async def test_create_event_unauthenticated(client: AsyncClient):
    response = await client.post("/api/v1/events/", json=event_payload())
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_buyers_cannot_create_events(client: AsyncClient, buyer_headers):
    response = await client.post("/api/v1/events/", json=event_payload(), headers=buyer_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_event_past_date(client: AsyncClient, organizer_headers):
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    response = await client.post("/api/v1/events/", json=event_payload(starts_at=past), headers=organizer_headers)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_EVENT_DATES"


@pytest.mark.asyncio
async def test_create_event_invalid_capacity(client: AsyncClient, organizer_headers):
    payload = event_payload(ticket_types=[{"name": "Free", "price": "0", "quantity_available": 0}])
    response = await client.post("/api/v1/events/", json=payload, headers=organizer_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_publish_puts_event_in_catalog(client: AsyncClient, organizer_headers):
    created = (await client.post("/api/v1/events/", json=event_payload(), headers=organizer_headers)).json()

    listing = (await client.get("/api/v1/events/")).json()
    assert created["id"] not in [e["id"] for e in listing["events"]]

    published = await client.post(f"/api/v1/events/{created['id']}/publish", headers=organizer_headers)
    assert published.status_code == 200
    assert published.json()["status"] == "published"

    listing = (await client.get("/api/v1/events/")).json()
    assert created["id"] in [e["id"] for e in listing["events"]]
    assert listing["cached"] is False


@pytest.mark.asyncio
async def test_publish_requires_a_ticket_type(client: AsyncClient, organizer_headers):
    created = (
        await client.post("/api/v1/events/", json=event_payload(ticket_types=[]), headers=organizer_headers)
    ).json()

    response = await client.post(f"/api/v1/events/{created['id']}/publish", headers=organizer_headers)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_STATUS_TRANSITION"


@pytest.mark.asyncio
async def test_only_owner_manages_event(client: AsyncClient, organizer_headers, other_organizer_headers):
    created = (await client.post("/api/v1/events/", json=event_payload(), headers=organizer_headers)).json()

    response = await client.post(
        f"/api/v1/events/{created['id']}/publish", headers=other_organizer_headers
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "NOT_EVENT_ORGANIZER"


@pytest.mark.asyncio
async def test_drafts_are_hidden_from_the_public(client: AsyncClient, organizer_headers, buyer_headers):
    created = (await client.post("/api/v1/events/", json=event_payload(), headers=organizer_headers)).json()

    assert (await client.get(f"/api/v1/events/{created['id']}")).status_code == 404
    assert (await client.get(f"/api/v1/events/{created['id']}", headers=buyer_headers)).status_code == 404
    own = await client.get(f"/api/v1/events/{created['id']}", headers=organizer_headers)
    assert own.status_code == 200
    assert own.json()["status"] == EVENT_DRAFT


@pytest.mark.asyncio
async def test_get_missing_event(client: AsyncClient):
    response = await client.get("/api/v1/events/does-not-exist")

    assert response.status_code == 404
    body = response.json()
    assert body["error"]["code"] == "EVENT_NOT_FOUND"
    assert body["error"]["category"] == "not_found"


@pytest.mark.asyncio
async def test_list_my_events_includes_drafts(client: AsyncClient, organizer_headers, event_with_tickets):
    await client.post("/api/v1/events/", json=event_payload(), headers=organizer_headers)

    response = await client.get("/api/v1/events/mine", headers=organizer_headers)

    assert response.status_code == 200
    assert sorted(e["status"] for e in response.json()) == ["draft", "published"]


@pytest.mark.asyncio
async def test_list_events_filters_by_city(client: AsyncClient, event_with_tickets):
    lisbon = (await client.get("/api/v1/events/", params={"city": "Lisbon"})).json()
    porto = (await client.get("/api/v1/events/", params={"city": "Porto"})).json()

    assert lisbon["total"] == 1
    assert porto["total"] == 0


@pytest.mark.asyncio
async def test_delete_unsold_event(client: AsyncClient, organizer_headers):
    created = (await client.post("/api/v1/events/", json=event_payload(), headers=organizer_headers)).json()

    response = await client.delete(f"/api/v1/events/{created['id']}", headers=organizer_headers)

    assert response.status_code == 204
    assert (await client.get(f"/api/v1/events/{created['id']}", headers=organizer_headers)).status_code == 404


@pytest.mark.asyncio
async def test_delete_event_with_sales_is_refused(
    client: AsyncClient, organizer_headers, buyer, event_with_tickets, purchase
):
    event, ticket_type = event_with_tickets
    await purchase(buyer, event, ticket_type)

    response = await client.delete(f"/api/v1/events/{event.id}", headers=organizer_headers)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "EVENT_HAS_SALES"


@pytest.mark.asyncio
async def test_cancelled_event_leaves_catalog(client: AsyncClient, organizer_headers, event_with_tickets):
    event, _ = event_with_tickets

    response = await client.post(f"/api/v1/events/{event.id}/cancel", headers=organizer_headers)
    again = await client.post(f"/api/v1/events/{event.id}/publish", headers=organizer_headers)

    assert response.json()["status"] == "cancelled"
    assert again.status_code == 422
    assert (await client.get("/api/v1/events/")).json()["total"] == 0


@pytest.mark.asyncio
async def test_add_ticket_type(client: AsyncClient, organizer_headers, event_with_tickets):
    event, _ = event_with_tickets

    response = await client.post(
        f"/api/v1/events/{event.id}/ticket-types",
        json={"name": "Backstage", "price": "300.00", "quantity_available": 5},
        headers=organizer_headers,
    )

    assert response.status_code == 201
    assert response.json()["event_id"] == event.id
    assert response.json()["quantity_sold"] == 0


@pytest.mark.asyncio
async def test_capacity_can_only_grow(client: AsyncClient, organizer_headers, event_with_tickets):
    _, ticket_type = event_with_tickets

    grown = await client.patch(
        f"/api/v1/ticket-types/{ticket_type.id}/capacity",
        json={"quantity_available": 150},
        headers=organizer_headers,
    )
    shrunk = await client.patch(
        f"/api/v1/ticket-types/{ticket_type.id}/capacity",
        json={"quantity_available": 120},
        headers=organizer_headers,
    )

    assert grown.status_code == 200
    assert grown.json()["available_remaining"] == 150
    assert shrunk.status_code == 422
    assert shrunk.json()["error"]["code"] == "INVALID_CAPACITY"


@pytest.mark.asyncio
async def test_deactivated_ticket_type_stops_selling(
    client: AsyncClient, organizer_headers, buyer_headers, event_with_tickets
):
    event, ticket_type = event_with_tickets

    response = await client.patch(
        f"/api/v1/ticket-types/{ticket_type.id}/active",
        json={"is_active": False},
        headers=organizer_headers,
    )
    order = await client.post(
        "/api/v1/orders/",
        json={"event_id": event.id, "lines": [{"ticket_type_id": ticket_type.id, "quantity": 1}]},
        headers=buyer_headers,
    )

    assert response.json()["is_active"] is False
    assert order.status_code == 409
    assert order.json()["error"]["code"] == "TICKET_TYPE_INACTIVE"


async def abandon_checkout(db_session, buyer, event, ticket_type, quantity, gateway):
    """Hold tickets in an order whose payment deadline passed long ago."""
    created = await checkout_service.create_order(
        db_session,
        buyer,
        event.id,
        [CartLine(ticket_type.id, quantity)],
        gateway=gateway,
        now=utcnow() - timedelta(hours=2),
    )
    assert created.ok, created
    return created.value.order


@pytest.mark.asyncio
async def test_event_page_releases_abandoned_holds(client: AsyncClient, db_session, buyer, scarce_event, gateway):
    event, ticket_type = scarce_event
    order = await abandon_checkout(db_session, buyer, event, ticket_type, 2, gateway)

    response = await client.get(f"/api/v1/events/{event.id}")

    assert response.status_code == 200
    assert response.json()["ticket_types"][0]["available_remaining"] == 2
    assert response.json()["ticket_types"][0]["quantity_held"] == 0
    expired = await checkout_service.get_order(db_session, order.id)
    assert expired.cancel_reason == "expired"


@pytest.mark.asyncio
async def test_catalog_releases_abandoned_holds(client: AsyncClient, db_session, buyer, scarce_event, gateway):
    event, ticket_type = scarce_event
    await abandon_checkout(db_session, buyer, event, ticket_type, 2, gateway)

    listing = (await client.get("/api/v1/events/")).json()

    [listed] = [e for e in listing["events"] if e["id"] == event.id]
    assert listed["ticket_types"][0]["available_remaining"] == 2
