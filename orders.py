"""
Order Lifecycle Manager

Placed -> Making -> Ready -> Delivered, driven by kitchen/admin staff.
Owners may edit items while an order is Placed and cancel it while it is
Placed or Making. Status updates accept any of the four values regardless of
the current one.
"""

import logging
from typing import List, Optional

from database import ORDERS, USERS, DocumentStore, object_id, storage_errors, utcnow
from errors import NotFound, ValidationError
from outbox import Outbox, PushMessage, RealtimeEvent
from realtime import KITCHEN_ROOM
from schemas import ORDER_STATUSES, Order, OrderItem, PlaceOrderRequest

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = ("Placed",)
CANCELLABLE_STATUSES = ("Placed", "Making")
NEW_TAG = "New"


def item_summary(items: List[OrderItem]) -> str:
    return ", ".join(f"{i.quantity}x {i.item}" for i in items)


class OrderService:
    def __init__(self, store: DocumentStore, outbox: Outbox):
        self.store = store
        self.outbox = outbox

    def place(self, payload: PlaceOrderRequest) -> dict:
        order = Order(
            user_id=payload.user_id,
            user_name=payload.user_name,
            slot=payload.slot,
            items=payload.items,
            status="Placed",
            tags=[NEW_TAG],
            timestamp=utcnow(),
        )
        with storage_errors("Server error during order submission."):
            created = self.store.create_document(ORDERS, order)
        logger.info(f"New Order placed: {created['_id']} by {order.user_name} in {order.slot}")

        self.outbox.publish(RealtimeEvent("new-order", created, KITCHEN_ROOM))
        self.outbox.publish(PushMessage(
            title="🍽️ New Order!",
            body=f"{order.user_name}: {item_summary(order.items)}",
            data={
                "type": "new-order",
                "orderId": created["_id"],
                "userName": order.user_name,
                "timestamp": order.timestamp.isoformat(),
            },
        ))
        return created

    def list_for_user(self, user_id: int) -> List[dict]:
        # Delivered orders stay in the customer's history
        with storage_errors("Server error fetching user orders."):
            return self.store.get_documents(ORDERS, {"userId": user_id}, sort=[("timestamp", -1)])

    def list_active(self) -> List[dict]:
        """Undelivered orders, oldest first, with the placing user's profile."""
        with storage_errors("Server error fetching orders."):
            orders = self.store.get_documents(
                ORDERS, {"status": {"$ne": "Delivered"}}, sort=[("timestamp", 1)]
            )
            user_ids = sorted({o["userId"] for o in orders})
            users = self.store.get_documents(
                USERS,
                {"id": {"$in": user_ids}},
                projection={"id": 1, "name": 1, "profileImage": 1, "avatar": 1, "role": 1},
            ) if user_ids else []

        profiles = {u["id"]: u for u in users}
        for order in orders:
            user = profiles.get(order["userId"], {})
            order["userProfile"] = {
                "name": user.get("name") or order.get("userName"),
                "profileImage": user.get("profileImage") or user.get("avatar"),
                "role": user.get("role", "user"),
            }
        return orders

    def _owned(self, order_id: str, user_id: int, statuses) -> Optional[dict]:
        oid = object_id(order_id)
        if oid is None:
            return None
        return {"_id": oid, "userId": user_id, "status": {"$in": list(statuses)}}

    def edit(self, order_id: str, user_id: int, items: Optional[List[OrderItem]]) -> dict:
        if not items:
            raise ValidationError("Items list is empty for update.")

        query = self._owned(order_id, user_id, EDITABLE_STATUSES)
        updated = None
        if query is not None:
            with storage_errors("Server error updating order."):
                updated = self.store.find_one_and_update(ORDERS, query, {"$set": {
                    "items": [i.model_dump(by_alias=True, exclude_none=True) for i in items],
                    "timestamp": utcnow(),
                }})
        if not updated:
            raise NotFound("Order not found or cannot be edited (status is already Making/Ready/Delivered).")

        logger.info(f"Order {order_id} EDITED by user {user_id}.")
        return updated

    def cancel(self, order_id: str, user_id: int) -> dict:
        query = self._owned(order_id, user_id, CANCELLABLE_STATUSES)
        removed = None
        if query is not None:
            with storage_errors("Server error cancelling order."):
                removed = self.store.find_one_and_delete(ORDERS, query)
        if not removed:
            raise NotFound("Order not found or cannot be cancelled at this stage.")

        logger.warning(f"Order {order_id} CANCELLED by user {user_id}.")
        self.outbox.publish(RealtimeEvent("order-deleted", {
            "orderId": order_id,
            "userId": user_id,
            "cancelledBy": user_id,
            "timestamp": utcnow().isoformat(),
        }, KITCHEN_ROOM))
        return removed

    def update_status(self, order_id: str, status: Optional[str], actor: str = "staff") -> dict:
        if status not in ORDER_STATUSES:
            raise ValidationError("Invalid status provided.")

        oid = object_id(order_id)
        updated = None
        if oid is not None:
            with storage_errors("Server error updating order status."):
                updated = self.store.find_one_and_update(
                    ORDERS, {"_id": oid}, {"$set": {"status": status}, "$pull": {"tags": NEW_TAG}}
                )
        if not updated:
            raise NotFound("Order not found.")

        logger.info(f"Order {order_id} status updated to: {status} by {actor}")
        return updated
