"""
Tests for the order lifecycle: creation rules, ownership, fulfillment
transitions, cancellation, deletion and the admin reports.
"""

import copy
from datetime import datetime, timedelta, timezone

import pytest

from food_ordering.auth import CurrentUser
from food_ordering.core.exceptions import (
    Forbidden,
    InvalidStateTransition,
    OrderNotFound,
    ValidationError,
)
from food_ordering.models import OrderStatus
from food_ordering.schemas import OrderCreate
from food_ordering.services.orders import OrderService, compute_total, utc_weekday

from conftest import ADMIN_ID, OTHER_ID, OWNER_ID

OWNER = CurrentUser(OWNER_ID)
OTHER = CurrentUser(OTHER_ID)
ADMIN = CurrentUser(ADMIN_ID, is_admin=True)


async def create_order(db, payload, owner_id=OWNER_ID, status=None):
    order = await OrderService(db).create(owner_id, OrderCreate.model_validate(payload))
    if status is not None:
        order.status = status
        await db.commit()
    return order


# ============================================================================
# Creation
# ============================================================================


class TestCreate:

    @pytest.mark.asyncio
    async def test_creates_pending_order(self, db, order_payload):
        order = await create_order(db, order_payload)

        assert order.owner_id == OWNER_ID
        assert order.status == OrderStatus.PENDING
        assert order.payment_status is None
        assert order.transaction_id is None
        assert order.payment_method == "stripe"
        assert order.total == pytest.approx(23.97)
        assert [item["quantity"] for item in order.items] == [2, 1]
        assert order.delivery_address["zip_code"] == "1207"

    def test_compute_total_includes_delivery_fee(self, order_payload):
        order_payload["deliveryFee"] = 2.5
        assert compute_total(OrderCreate.model_validate(order_payload)) == pytest.approx(26.47)

    @pytest.mark.asyncio
    async def test_rejects_empty_items(self, db, order_payload):
        order_payload["items"] = []
        with pytest.raises(ValidationError, match="Items"):
            await create_order(db, order_payload)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("total", [0, -5, None])
    async def test_rejects_non_positive_total(self, db, order_payload, total):
        order_payload["total"] = total
        with pytest.raises(ValidationError, match="total"):
            await create_order(db, order_payload)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["street", "city", "state", "zipCode"])
    async def test_rejects_each_missing_address_field(self, db, order_payload, field):
        order_payload["deliveryAddress"][field] = ""
        with pytest.raises(ValidationError, match="delivery address"):
            await create_order(db, order_payload)

    @pytest.mark.asyncio
    async def test_rejects_whitespace_address_field(self, db, order_payload):
        order_payload["deliveryAddress"]["city"] = "   "
        with pytest.raises(ValidationError, match="city"):
            await create_order(db, order_payload)

    @pytest.mark.asyncio
    async def test_rejects_missing_address(self, db, order_payload):
        del order_payload["deliveryAddress"]
        with pytest.raises(ValidationError, match="delivery address"):
            await create_order(db, order_payload)

    @pytest.mark.asyncio
    async def test_rejects_missing_payment_method(self, db, order_payload):
        del order_payload["paymentMethod"]
        with pytest.raises(ValidationError, match="Payment method"):
            await create_order(db, order_payload)

    @pytest.mark.asyncio
    async def test_rejects_total_not_matching_items(self, db, order_payload):
        order_payload["total"] = 5.00
        with pytest.raises(ValidationError, match="does not match"):
            await create_order(db, order_payload)

    @pytest.mark.asyncio
    async def test_accepts_total_within_tolerance(self, db, order_payload):
        order_payload["total"] = 23.975
        order = await create_order(db, order_payload)
        assert order.total == pytest.approx(23.98, abs=0.01)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("total", [23.96, 23.98])
    async def test_accepts_total_one_cent_off(self, db, order_payload, total):
        order_payload["total"] = total
        order = await create_order(db, order_payload)
        assert order.total == pytest.approx(total)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("total", [23.95, 23.99])
    async def test_rejects_total_two_cents_off(self, db, order_payload, total):
        order_payload["total"] = total
        with pytest.raises(ValidationError, match="does not match"):
            await create_order(db, order_payload)


# ============================================================================
# Access
# ============================================================================


class TestAccess:

    @pytest.mark.asyncio
    async def test_owner_and_admin_can_read(self, db, order_payload):
        order = await create_order(db, order_payload)
        service = OrderService(db)

        assert (await service.get(order.id, OWNER)).id == order.id
        assert (await service.get(order.id, ADMIN)).id == order.id

    @pytest.mark.asyncio
    async def test_other_user_is_forbidden(self, db, order_payload):
        order = await create_order(db, order_payload)
        with pytest.raises(Forbidden):
            await OrderService(db).get(order.id, OTHER)

    @pytest.mark.asyncio
    async def test_unknown_order(self, db):
        with pytest.raises(OrderNotFound):
            await OrderService(db).get("does-not-exist", ADMIN)

    @pytest.mark.asyncio
    async def test_list_all_is_admin_only(self, db, order_payload):
        await create_order(db, order_payload)
        await create_order(db, copy.deepcopy(order_payload), owner_id=OTHER_ID)
        service = OrderService(db)

        assert len(await service.list_all(ADMIN)) == 2
        with pytest.raises(Forbidden):
            await service.list_all(OWNER)

    @pytest.mark.asyncio
    async def test_list_mine_only_returns_own_orders(self, db, order_payload):
        mine = await create_order(db, order_payload)
        await create_order(db, copy.deepcopy(order_payload), owner_id=OTHER_ID)

        orders = await OrderService(db).list_mine(OWNER)
        assert [o.id for o in orders] == [mine.id]


# ============================================================================
# Fulfillment status
# ============================================================================


class TestStatusTransitions:

    @pytest.mark.asyncio
    async def test_admin_walks_order_to_completion(self, db, order_payload):
        order = await create_order(db, order_payload)
        service = OrderService(db)

        for status in (
            OrderStatus.CONFIRMED,
            OrderStatus.PREPARING,
            OrderStatus.OUT_FOR_DELIVERY,
            OrderStatus.DELIVERED,
            OrderStatus.COMPLETED,
        ):
            order = await service.update_status(order.id, status, ADMIN)
            assert order.status == status

    @pytest.mark.asyncio
    async def test_skipping_ahead_is_rejected(self, db, order_payload):
        order = await create_order(db, order_payload)
        with pytest.raises(InvalidStateTransition):
            await OrderService(db).update_status(order.id, OrderStatus.DELIVERED, ADMIN)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
    async def test_terminal_states_are_final(self, db, order_payload, terminal):
        order = await create_order(db, order_payload, status=terminal)
        with pytest.raises(InvalidStateTransition):
            await OrderService(db).update_status(order.id, OrderStatus.PENDING, ADMIN)

    @pytest.mark.asyncio
    async def test_owner_cannot_change_status(self, db, order_payload):
        order = await create_order(db, order_payload)
        with pytest.raises(Forbidden):
            await OrderService(db).update_status(order.id, OrderStatus.CONFIRMED, OWNER)


# ============================================================================
# Cancel / delete
# ============================================================================


class TestCancelAndDelete:

    @pytest.mark.asyncio
    async def test_cancel_pending_order(self, db, order_payload):
        order = await create_order(db, order_payload)
        order = await OrderService(db).cancel(order.id, OWNER)
        assert order.status == OrderStatus.CANCELLED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [s for s in OrderStatus if s != OrderStatus.PENDING])
    async def test_cancel_only_while_pending(self, db, order_payload, status):
        order = await create_order(db, order_payload, status=status)
        with pytest.raises(InvalidStateTransition):
            await OrderService(db).cancel(order.id, OWNER)

    @pytest.mark.asyncio
    async def test_cancel_completed_order_is_rejected(self, db, order_payload):
        order = await create_order(db, order_payload, status=OrderStatus.COMPLETED)
        with pytest.raises(InvalidStateTransition, match="Cannot cancel"):
            await OrderService(db).cancel(order.id, ADMIN)

    @pytest.mark.asyncio
    async def test_other_user_cannot_cancel(self, db, order_payload):
        order = await create_order(db, order_payload)
        with pytest.raises(Forbidden):
            await OrderService(db).cancel(order.id, OTHER)

    @pytest.mark.asyncio
    async def test_delete_cancelled_order(self, db, order_payload):
        order = await create_order(db, order_payload, status=OrderStatus.CANCELLED)
        service = OrderService(db)

        await service.delete(order.id, OWNER)

        with pytest.raises(OrderNotFound):
            await service.get(order.id, ADMIN)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [s for s in OrderStatus if s != OrderStatus.CANCELLED])
    async def test_delete_only_when_cancelled(self, db, order_payload, status):
        order = await create_order(db, order_payload, status=status)
        with pytest.raises(InvalidStateTransition):
            await OrderService(db).delete(order.id, OWNER)


# ============================================================================
# Reports
# ============================================================================


class TestReports:

    @pytest.mark.asyncio
    async def test_stats_exclude_cancelled(self, db, order_payload):
        await create_order(db, order_payload)
        await create_order(db, copy.deepcopy(order_payload))
        await create_order(db, copy.deepcopy(order_payload), status=OrderStatus.CANCELLED)

        stats = await OrderService(db).stats(ADMIN)
        assert stats == {"total_orders": 2, "total_revenue": pytest.approx(47.94)}

    @pytest.mark.asyncio
    async def test_stats_admin_only(self, db):
        with pytest.raises(Forbidden):
            await OrderService(db).stats(OWNER)

    @pytest.mark.asyncio
    async def test_weekly_sales_bucketed_monday_first(self, db, order_payload):
        # 2026-10-19 is a Monday; the window opens Tuesday 2026-10-13
        now = datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)

        placements = [
            (datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc), None),
            (datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc), None),
            (datetime(2026, 10, 10, 12, 0, tzinfo=timezone.utc), None),
            (datetime(2026, 10, 19, 11, 0, tzinfo=timezone.utc), OrderStatus.CANCELLED),
        ]
        for created_at, status in placements:
            order = await create_order(db, copy.deepcopy(order_payload), status=status)
            order.created_at = created_at
            await db.commit()

        days = await OrderService(db).weekly_sales(ADMIN, now=now)

        assert [d["name"] for d in days] == ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
        sales = {d["name"]: d["sales"] for d in days}
        assert sales["Mon"] == pytest.approx(23.97)
        assert sales["Wed"] == pytest.approx(23.97)
        assert sales["Sat"] == 0

    def test_weekday_is_taken_in_utc(self):
        # Monday 02:00 in Dhaka is still Sunday in UTC
        dhaka = timezone(timedelta(hours=6))
        assert utc_weekday(datetime(2026, 10, 19, 2, 0, tzinfo=dhaka)) == 6
        assert utc_weekday(datetime(2026, 10, 19, 2, 0, tzinfo=timezone.utc)) == 0
        assert utc_weekday(datetime(2026, 10, 19, 2, 0)) == 0


# ============================================================================
# HTTP surface
# ============================================================================


class TestOrderRoutes:

    @pytest.mark.asyncio
    async def test_create_returns_camel_case_order(self, client, auth_headers, order_payload):
        response = await client.post("/api/orders", json=order_payload, headers=auth_headers())

        assert response.status_code == 201
        body = response.json()
        assert body["ownerId"] == OWNER_ID
        assert body["status"] == "pending"
        assert body["paymentMethod"] == "stripe"
        assert body["paymentStatus"] is None
        assert body["deliveryAddress"]["zip_code"] == "1207"

    @pytest.mark.asyncio
    async def test_create_requires_token(self, client, order_payload):
        response = await client.post("/api/orders", json=order_payload)

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "message": "No token, authorization denied",
            "code": "unauthorized",
        }

    @pytest.mark.asyncio
    async def test_bad_token_is_rejected(self, client, order_payload):
        response = await client.post(
            "/api/orders",
            json=order_payload,
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401
        assert response.json()["message"] == "Token is not valid"

    @pytest.mark.asyncio
    async def test_domain_validation_error_shape(self, client, auth_headers, order_payload):
        order_payload["deliveryAddress"]["zipCode"] = ""
        response = await client.post("/api/orders", json=order_payload, headers=auth_headers())

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_schema_error_mapped_to_validation_error(self, client, auth_headers, order_payload):
        order_payload["items"][0]["quantity"] = 0
        response = await client.post("/api/orders", json=order_payload, headers=auth_headers())

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_my_orders_and_foreign_access(self, client, auth_headers, order_payload):
        created = await client.post("/api/orders", json=order_payload, headers=auth_headers())
        order_id = created.json()["id"]

        mine = await client.get("/api/orders/my-orders", headers=auth_headers())
        assert [o["id"] for o in mine.json()] == [order_id]

        foreign = await client.get(f"/api/orders/{order_id}", headers=auth_headers(OTHER_ID))
        assert foreign.status_code == 403

        missing = await client.get("/api/orders/nope", headers=auth_headers())
        assert missing.status_code == 404
        assert missing.json()["code"] == "order_not_found"

    @pytest.mark.asyncio
    async def test_admin_status_update_and_bad_status(self, client, auth_headers, order_payload):
        created = await client.post("/api/orders", json=order_payload, headers=auth_headers())
        order_id = created.json()["id"]
        admin = auth_headers(ADMIN_ID, is_admin=True)

        response = await client.put(f"/api/orders/{order_id}", json={"status": "confirmed"}, headers=admin)
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

        response = await client.put(f"/api/orders/{order_id}", json={"status": "shipped"}, headers=admin)
        assert response.status_code == 400

        response = await client.put(f"/api/orders/{order_id}", json={"status": "pending"}, headers=admin)
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_state_transition"

    @pytest.mark.asyncio
    async def test_cancel_then_delete(self, client, auth_headers, order_payload):
        created = await client.post("/api/orders", json=order_payload, headers=auth_headers())
        order_id = created.json()["id"]

        early_delete = await client.delete(f"/api/orders/{order_id}", headers=auth_headers())
        assert early_delete.status_code == 400

        cancelled = await client.put(f"/api/orders/{order_id}/cancel", headers=auth_headers())
        assert cancelled.json()["status"] == "cancelled"

        deleted = await client.delete(f"/api/orders/{order_id}", headers=auth_headers())
        assert deleted.status_code == 200
        assert deleted.json() == {"message": "Order removed"}

    @pytest.mark.asyncio
    async def test_admin_reports(self, client, auth_headers, order_payload):
        await client.post("/api/orders", json=order_payload, headers=auth_headers())
        admin = auth_headers(ADMIN_ID, is_admin=True)

        stats = await client.get("/api/orders/stats", headers=admin)
        assert stats.json() == {"totalOrders": 1, "totalRevenue": 23.97}

        weekly = await client.get("/api/orders/weekly-sales", headers=admin)
        assert len(weekly.json()) == 7
        assert sum(day["sales"] for day in weekly.json()) == pytest.approx(23.97)

        forbidden = await client.get("/api/orders/stats", headers=auth_headers())
        assert forbidden.status_code == 403
