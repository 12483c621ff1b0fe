"""
Chef-Call Register

Transient request/response ledger between a seated customer and kitchen
staff. Calls live only in process memory. A responded call is handed to the
customer's status poll once and then marked read.
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from errors import NotFound, ValidationError
from outbox import Outbox, PushMessage, RealtimeEvent
from realtime import KITCHEN_ROOM, user_room

logger = logging.getLogger(__name__)

ACTIONS = ("coming", "coming_5min", "dismiss")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ChefCall:
    id: str
    user_id: int
    user_name: str
    seat_number: str
    timestamp: str
    status: str = "pending"
    chef_response: Optional[str] = None
    response_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        return {
            "id": d["id"],
            "userId": d["user_id"],
            "userName": d["user_name"],
            "seatNumber": d["seat_number"],
            "timestamp": d["timestamp"],
            "status": d["status"],
            "chefResponse": d["chef_response"],
            "responseTime": d["response_time"],
        }


class ChefCallRegister:
    """Single owner of the chef-call ledger.

    All reads and writes go through the lock; sync request handlers run on
    a thread pool and the WebSocket handlers run on the event loop.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: List[ChefCall] = []
        self._last_id = 0

    def _next_id(self) -> str:
        candidate = int(time.time() * 1000)
        self._last_id = max(candidate, self._last_id + 1)
        return str(self._last_id)

    def create(self, user_id: int, user_name: str, seat_number: str, timestamp: Optional[str] = None) -> dict:
        with self._lock:
            call = ChefCall(
                id=self._next_id(),
                user_id=user_id,
                user_name=user_name,
                seat_number=seat_number,
                timestamp=timestamp or _now_iso(),
            )
            self._calls.append(call)
            return call.to_dict()

    def pending(self) -> List[dict]:
        with self._lock:
            return [c.to_dict() for c in self._calls if c.status == "pending"]

    def consume_response(self, user_id: int) -> Optional[dict]:
        """Return the caller's latest responded call and mark it read."""
        with self._lock:
            for call in reversed(self._calls):
                if call.user_id == user_id and call.chef_response and call.status == "responded":
                    call.status = "read"
                    return call.to_dict()
        return None

    def respond(self, call_id: str, action: Optional[str]) -> dict:
        with self._lock:
            call = next((c for c in self._calls if c.id == str(call_id)), None)
            if call is None:
                raise NotFound("Call not found.")
            if action not in ACTIONS:
                raise ValidationError("Invalid action.")
            call.chef_response = action
            call.response_time = _now_iso()
            call.status = "dismissed" if action == "dismiss" else "responded"
            return call.to_dict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._calls)


def call_chef(
    register: ChefCallRegister,
    outbox: Outbox,
    user_id: int,
    user_name: str,
    seat_number: str,
    timestamp: Optional[str] = None,
) -> dict:
    call = register.create(user_id, user_name, seat_number, timestamp)
    logger.info(f"Chef called by {user_name} at {seat_number}")
    outbox.publish(RealtimeEvent("chef-call", call, KITCHEN_ROOM))
    outbox.publish(PushMessage(
        title="📞 Chef Called!",
        body=f"{user_name} at {seat_number} needs assistance",
        data={"type": "chef-call", "callId": call["id"]},
    ))
    return call


def respond_to_call(register: ChefCallRegister, outbox: Outbox, call_id: str, action: Optional[str]) -> dict:
    call = register.respond(call_id, action)
    logger.info(f"Chef call {call_id} responded with: {action}")
    outbox.publish(RealtimeEvent("chef-response", {
        "callId": call["id"],
        "response": action,
        "responseTime": call["responseTime"],
    }, user_room(call["userId"])))
    return call
