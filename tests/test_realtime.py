"""End-to-end tests for the WebSocket channel fed by the live outbox."""

import inspect

import main
from conftest import claims


def join(ws, role, user_id=None):
    ws.send_json({"event": "join", "data": {"role": role, "userId": user_id}})
    return ws.receive_json()


class TestJoin:
    def test_join_rooms(self, live_client):
        with live_client.websocket_connect("/ws") as kitchen, live_client.websocket_connect("/api/ws") as customer:
            assert kitchen.receive_json()["event"] == "connected"
            assert customer.receive_json()["event"] == "connected"

            assert join(kitchen, "admin") == {"event": "joined", "data": {"room": "kitchen"}}
            assert join(customer, "user", 101) == {"event": "joined", "data": {"room": "user_101"}}

            stats = live_client.get("/api/notification-debug").json()["realtime"]
            assert stats["rooms"] == {"kitchen": 1, "user_101": 1}

    def test_invalid_join(self, live_client):
        with live_client.websocket_connect("/ws") as ws:
            ws.receive_json()
            reply = join(ws, "user")
            assert reply["event"] == "error"

    def test_malformed_and_unknown_messages(self, live_client):
        with live_client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("not json")
            assert ws.receive_json() == {"event": "error", "data": {"message": "Malformed message."}}
            ws.send_json({"event": "dance"})
            assert ws.receive_json()["event"] == "error"
            ws.send_json({"event": "ping"})
            assert ws.receive_json() == {"event": "pong", "data": {}}

    def test_non_object_data_is_rejected(self, live_client):
        with live_client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"event": "join", "data": "kitchen"})
            assert ws.receive_json() == {"event": "error", "data": {"message": "Malformed message."}}
            ws.send_json({"event": "call-chef", "data": ["Seat_1"]})
            assert ws.receive_json()["event"] == "error"
            ws.send_json({"event": "ping"})
            assert ws.receive_json() == {"event": "pong", "data": {}}

    def test_binary_frames(self, live_client):
        with live_client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_bytes(b'{"event": "ping"}')
            assert ws.receive_json() == {"event": "pong", "data": {}}
            ws.send_bytes(b"\xff\xfe")
            assert ws.receive_json() == {"event": "error", "data": {"message": "Malformed message."}}
            ws.send_json({"event": "ping"})
            assert ws.receive_json() == {"event": "pong", "data": {}}

    def test_debug_stats_are_read_on_the_event_loop(self, live_client):
        assert inspect.iscoroutinefunction(main.notification_debug)
        with live_client.websocket_connect("/ws") as ws:
            ws.receive_json()
            join(ws, "kitchen")
            stats = live_client.get("/api/notification-debug").json()["realtime"]
            assert stats["rooms"] == {"kitchen": 1}


class TestLiveEvents:
    def test_new_order_reaches_kitchen(self, live_client, order_payload):
        with live_client.websocket_connect("/ws") as kitchen:
            kitchen.receive_json()
            join(kitchen, "kitchen")

            response = live_client.post("/api/orders", json=order_payload)
            assert response.status_code == 201

            message = kitchen.receive_json()
            assert message["event"] == "new-order"
            assert message["data"]["_id"] == response.json()["order"]["_id"]
            assert message["data"]["userName"] == "A"

    def test_chef_call_round_trip_over_socket(self, live_client, customer):
        with live_client.websocket_connect("/ws") as kitchen, live_client.websocket_connect("/ws") as seat:
            kitchen.receive_json()
            seat.receive_json()
            join(kitchen, "kitchen")
            join(seat, "user", 101)

            seat.send_json({"event": "call-chef", "data": {"userId": 101, "userName": "A", "seatNumber": "Seat_4"}})
            sent = seat.receive_json()
            assert sent["event"] == "call-sent"
            assert sent["data"]["success"] is True
            call_id = sent["data"]["call"]["id"]

            incoming = kitchen.receive_json()
            assert incoming["event"] == "chef-call"
            assert incoming["data"]["seatNumber"] == "Seat_4"

            kitchen.send_json({"event": "chef-response", "data": {"callId": call_id, "response": "coming_5min"}})
            reply = seat.receive_json()
            assert reply["event"] == "chef-response"
            assert reply["data"]["callId"] == call_id
            assert reply["data"]["response"] == "coming_5min"

            status = live_client.get("/api/chef-call-status", params=claims(customer)).json()
            assert status["call"]["chefResponse"] == "coming_5min"

    def test_customer_session_cannot_answer_calls(self, live_client):
        with live_client.websocket_connect("/ws") as seat:
            seat.receive_json()
            join(seat, "user", 101)
            seat.send_json({"event": "chef-response", "data": {"callId": "1", "response": "coming"}})
            assert seat.receive_json() == {
                "event": "error",
                "data": {"message": "Only kitchen sessions may respond to chef calls."},
            }

    def test_call_chef_for_another_seat_is_refused(self, live_client):
        with live_client.websocket_connect("/ws") as seat:
            seat.receive_json()
            join(seat, "user", 101)
            seat.send_json({"event": "call-chef", "data": {"userId": 999, "userName": "X", "seatNumber": "Seat_9"}})
            reply = seat.receive_json()
            assert reply["data"]["success"] is False
