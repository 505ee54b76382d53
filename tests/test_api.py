"""HTTP tests for the booking and catalog routes."""

from decimal import Decimal
from uuid import uuid4

from experience_booking_platform.services.capacity_gate import CapacityGate
from experience_booking_platform.utils.exceptions import ConflictError


async def _create_booking(client, headers, seed, quantity=2, add_on_ids=()):
    return await client.post(
        "/api/v1/bookings",
        json={
            "session_id": str(seed.session_id),
            "guest_id": str(seed.guest_id),
            "quantity": quantity,
            "add_on_ids": [str(add_on_id) for add_on_id in add_on_ids],
        },
        headers=headers,
    )


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_requires_bearer_token(client, seed):
    response = await client.get("/api/v1/bookings")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert response.json()["error"]["error_code"] == "UNAUTHORIZED"


async def test_rejects_token_for_unknown_business(client, seed, auth_headers):
    response = await client.get("/api/v1/bookings", headers=auth_headers(uuid4()))
    assert response.status_code == 401


async def test_create_booking(client, seed, auth_headers):
    response = await _create_booking(client, auth_headers(seed.business_id), seed, 2, [seed.wine_id])

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "CONFIRMED"
    assert Decimal(body["total"]) == Decimal("45.90")
    assert body["experience_name"] == "Sunset Cruise"
    assert [item["item_type"] for item in body["items"]] == ["SESSION", "ADD_ON"]
    assert body["items"][1]["add_on_name"] == "Wine"
    assert "X-Request-ID" in response.headers


async def test_capacity_rejection_is_a_client_error(client, seed, auth_headers):
    headers = auth_headers(seed.business_id)
    assert (await _create_booking(client, headers, seed, 9)).status_code == 201

    response = await _create_booking(client, headers, seed, 2)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["error_code"] == "CAPACITY_EXCEEDED"
    assert error["details"]["spots_available"] == 1


async def test_malformed_body_is_a_validation_error(client, seed, auth_headers):
    response = await _create_booking(client, auth_headers(seed.business_id), seed, 0)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["error_code"] == "VALIDATION_ERROR"
    assert "quantity" in error["details"]["field_errors"]


async def test_invalid_add_on(client, seed, auth_headers):
    response = await _create_booking(client, auth_headers(seed.business_id), seed, 1, [seed.unlinked_add_on_id])

    assert response.status_code == 400
    assert response.json()["error"]["error_code"] == "INVALID_ADD_ON"


async def test_conflict_returns_409_with_retry_after(client, seed, auth_headers, monkeypatch):
    async def always_conflict(self, session_id, delta, capacity):
        raise ConflictError(f"Session {session_id} was modified by another booking. Please try again.")

    monkeypatch.setattr(CapacityGate, "reserve", always_conflict)

    response = await _create_booking(client, auth_headers(seed.business_id), seed, 1)

    assert response.status_code == 409
    assert response.headers["Retry-After"] == "1"
    assert response.json()["error"]["error_code"] == "CONCURRENCY_CONFLICT"


async def test_update_quantity_and_cancel(client, seed, auth_headers):
    headers = auth_headers(seed.business_id)
    booking_id = (await _create_booking(client, headers, seed, 2)).json()["id"]

    resized = await client.patch(f"/api/v1/bookings/{booking_id}", json={"quantity": 5}, headers=headers)
    assert resized.status_code == 200
    assert resized.json()["quantity"] == 5
    assert Decimal(resized.json()["total"]) == Decimal("95.00")

    # Same status alongside a quantity change is ignored
    both = await client.patch(
        f"/api/v1/bookings/{booking_id}", json={"quantity": 4, "status": "confirmed"}, headers=headers
    )
    assert both.status_code == 200
    assert both.json()["quantity"] == 4

    cancelled = await client.patch(f"/api/v1/bookings/{booking_id}", json={"status": "CANCELLED"}, headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    availability = await client.get(f"/api/v1/sessions/{seed.session_id}/availability", headers=headers)
    assert availability.json()["spots_available"] == 10

    again = await client.patch(f"/api/v1/bookings/{booking_id}", json={"status": "CONFIRMED"}, headers=headers)
    assert again.status_code == 400
    assert again.json()["error"]["error_code"] == "ILLEGAL_TRANSITION"

    resize_cancelled = await client.patch(f"/api/v1/bookings/{booking_id}", json={"quantity": 1}, headers=headers)
    assert resize_cancelled.status_code == 400
    assert resize_cancelled.json()["error"]["error_code"] == "BOOKING_CANCELLED"


async def test_rejected_status_leaves_quantity_untouched(client, seed, auth_headers):
    headers = auth_headers(seed.business_id)
    booking_id = (await _create_booking(client, headers, seed, 2)).json()["id"]
    completed = await client.patch(f"/api/v1/bookings/{booking_id}", json={"status": "COMPLETED"}, headers=headers)
    assert completed.status_code == 200

    response = await client.patch(
        f"/api/v1/bookings/{booking_id}", json={"quantity": 5, "status": "PENDING"}, headers=headers
    )
    assert response.status_code == 400
    assert response.json()["error"]["error_code"] == "ILLEGAL_TRANSITION"

    booking = (await client.get(f"/api/v1/bookings/{booking_id}", headers=headers)).json()
    assert booking["quantity"] == 2
    assert Decimal(booking["total"]) == Decimal("38.00")
    assert booking["status"] == "COMPLETED"

    availability = await client.get(f"/api/v1/sessions/{seed.session_id}/availability", headers=headers)
    assert availability.json()["committed_quantity"] == 2


async def test_check_in(client, seed, auth_headers):
    headers = auth_headers(seed.business_id)
    booking_id = (await _create_booking(client, headers, seed, 2)).json()["id"]

    response = await client.post(f"/api/v1/bookings/{booking_id}/check-in", headers=headers)
    assert response.status_code == 200
    assert response.json()["checked_in"] is True
    assert response.json()["checked_in_at"] is not None

    other = (await _create_booking(client, headers, seed, 1)).json()["id"]
    await client.patch(f"/api/v1/bookings/{other}", json={"status": "CANCELLED"}, headers=headers)

    refused = await client.post(f"/api/v1/bookings/{other}/check-in", headers=headers)
    assert refused.status_code == 400
    assert refused.json()["error"]["error_code"] == "BOOKING_CANCELLED"


async def test_empty_update_is_rejected(client, seed, auth_headers):
    headers = auth_headers(seed.business_id)
    booking_id = (await _create_booking(client, headers, seed, 1)).json()["id"]

    response = await client.patch(f"/api/v1/bookings/{booking_id}", json={}, headers=headers)
    assert response.status_code == 400


async def test_other_business_gets_not_found(client, seed, auth_headers):
    booking_id = (await _create_booking(client, auth_headers(seed.business_id), seed, 1)).json()["id"]

    response = await client.get(f"/api/v1/bookings/{booking_id}", headers=auth_headers(seed.other_business_id))

    assert response.status_code == 404
    assert response.json()["error"]["error_code"] == "NOT_FOUND"


async def test_list_and_stats(client, seed, auth_headers):
    headers = auth_headers(seed.business_id)
    await _create_booking(client, headers, seed, 2)
    await _create_booking(client, headers, seed, 1)

    listing = await client.get("/api/v1/bookings", params={"status": "CONFIRMED", "limit": 1}, headers=headers)
    assert listing.status_code == 200
    assert listing.json()["total"] == 2
    assert len(listing.json()["bookings"]) == 1

    too_big = await client.get("/api/v1/bookings", params={"limit": 500}, headers=headers)
    assert too_big.status_code == 400

    stats = (await client.get("/api/v1/bookings/stats", headers=headers)).json()
    assert stats["tickets_sold"] == 3
    assert Decimal(stats["total_revenue"]) == Decimal("57.00")


async def test_guest_upsert_and_bookings(client, seed, auth_headers):
    headers = auth_headers(seed.business_id)

    response = await client.post(
        "/api/v1/guests",
        json={"first_name": "Grace", "last_name": "Hopper", "email": "grace@example.com"},
        headers=headers,
    )
    assert response.status_code == 201
    guest_id = response.json()["id"]

    invalid = await client.post(
        "/api/v1/guests",
        json={"first_name": "Grace", "last_name": "Hopper", "email": "not-an-email"},
        headers=headers,
    )
    assert invalid.status_code == 400

    bookings = await client.get(f"/api/v1/guests/{guest_id}/bookings", headers=headers)
    assert bookings.status_code == 200
    assert bookings.json() == []


async def test_guest_directory(client, seed, auth_headers):
    headers = auth_headers(seed.business_id)
    await _create_booking(client, headers, seed, 1)
    await client.post(
        "/api/v1/guests",
        json={"first_name": "Grace", "last_name": "Hopper", "email": "grace@navy.mil"},
        headers=headers,
    )

    listing = await client.get("/api/v1/guests", headers=headers)
    assert listing.status_code == 200
    assert [(g["last_name"], g["booking_count"]) for g in listing.json()] == [("Hopper", 0), ("Lovelace", 1)]

    search = await client.get("/api/v1/guests", params={"search": "NAVY"}, headers=headers)
    assert [g["first_name"] for g in search.json()] == ["Grace"]

    too_many = await client.get("/api/v1/guests", params={"limit": 51}, headers=headers)
    assert too_many.status_code == 400


async def test_add_on_in_use_cannot_be_deleted(client, seed, auth_headers):
    headers = auth_headers(seed.business_id)
    await _create_booking(client, headers, seed, 1, [seed.photo_id])

    response = await client.delete(f"/api/v1/addons/{seed.photo_id}", headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["error_code"] == "HAS_DEPENDENTS"

    deactivated = await client.patch(f"/api/v1/addons/{seed.photo_id}", json={"is_active": False}, headers=headers)
    assert deactivated.status_code == 200

    offered = await client.get(f"/api/v1/events/{seed.event_id}/addons", headers=headers)
    assert [add_on["name"] for add_on in offered.json()["add_ons"]] == ["Wine"]


async def test_catalog_routes(client, seed, auth_headers):
    headers = auth_headers(seed.business_id)

    experience = await client.post(
        "/api/v1/experiences",
        json={"name": "Night Walk", "slug": "night-walk", "base_price": "15.00", "max_capacity": 12},
        headers=headers,
    )
    assert experience.status_code == 201

    event = await client.post(
        "/api/v1/events",
        json={
            "experience_id": experience.json()["id"],
            "name": "Winter",
            "slug": "winter",
            "start_date": "2030-12-01T00:00:00Z",
            "end_date": "2030-12-31T00:00:00Z",
        },
        headers=headers,
    )
    assert event.status_code == 201

    backwards = await client.post(
        "/api/v1/sessions",
        json={
            "event_id": event.json()["id"],
            "start_time": "2030-12-01T20:00:00Z",
            "end_time": "2030-12-01T19:00:00Z",
        },
        headers=headers,
    )
    assert backwards.status_code == 400

    session = await client.post(
        "/api/v1/sessions",
        json={
            "event_id": event.json()["id"],
            "start_time": "2030-12-01T19:00:00Z",
            "end_time": "2030-12-01T21:00:00Z",
            "max_capacity": 4,
        },
        headers=headers,
    )
    assert session.status_code == 201

    availability = await client.get(f"/api/v1/sessions/{session.json()['id']}/availability", headers=headers)
    assert availability.json()["capacity"] == 4

    deleted = await client.delete(f"/api/v1/experiences/{experience.json()['id']}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["message"] == "Experience deleted"
