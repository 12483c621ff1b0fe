import json
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from access import authorize, require_self_or_admin
from catalog import CatalogService
from chef_calls import ChefCallRegister, call_chef, respond_to_call
from config import Settings, configure_logging
from database import DocumentStore
from errors import ApiError, Forbidden, Internal, NotFound, ValidationError
from feedback import FeedbackService
from notifications import PushDispatcher, TokenRegistry
from orders import OrderService
from outbox import Outbox
from realtime import KITCHEN_ROOM, RealtimeHub
from schemas import (
    AccessUpdateRequest,
    ChefCallRequest,
    ChefResponseRequest,
    CreateUserRequest,
    EditOrderRequest,
    FeedbackRequest,
    FeedbackStatusRequest,
    KitchenNotificationRequest,
    LocationsUpdateRequest,
    LoginRequest,
    MenuUpdateRequest,
    OrderStatusRequest,
    PlaceOrderRequest,
    ProfileImageBroadcast,
    ProfileImageRequest,
    ProfileUpdateRequest,
    RoleUpdateRequest,
    SaveTokenRequest,
    SendNotificationRequest,
    TestNotificationRequest,
)
from seeding import seed_database
from users import UserService

logger = logging.getLogger(__name__)
request_logger = logging.getLogger("cafe.requests")


# ===================== Dependencies =====================

def get_orders(request: Request) -> OrderService:
    return OrderService(request.app.state.store, request.app.state.outbox)


def get_users(request: Request) -> UserService:
    return UserService(request.app.state.store, request.app.state.outbox)


def get_catalog(request: Request) -> CatalogService:
    return CatalogService(request.app.state.store)


def get_feedback(request: Request) -> FeedbackService:
    return FeedbackService(request.app.state.store)


def get_chef_calls(request: Request) -> ChefCallRegister:
    return request.app.state.chef_calls


def get_outbox(request: Request) -> Outbox:
    return request.app.state.outbox


def get_tokens(request: Request) -> TokenRegistry:
    return request.app.state.tokens


def get_push(request: Request) -> PushDispatcher:
    return request.app.state.push


ANY_ROLE = ("user", "kitchen", "admin")
STAFF = ("admin", "kitchen")

service = APIRouter()
api = APIRouter()


# ===================== Public Endpoints =====================
@service.get("/")
def root():
    return {"message": "Café Ordering API running"}


@service.get("/health")
def health(request: Request):
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.time() - request.app.state.started_at, 3),
    }


@service.get("/test")
def database_status(request: Request):
    settings: Settings = request.app.state.settings
    store: DocumentStore = request.app.state.store
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
        "push": "✅ Initialized" if request.app.state.push.initialized else "⚠️  Disabled",
    }
    try:
        if store.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["collections"] = store.list_collection_names()
        else:
            response["database"] = "⚠️  Available but not initialized"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
    response["database_name"] = "✅ Set" if settings.database_name else "❌ Not Set"
    return response


# ===================== Auth =====================
@api.post("/login")
def login(payload: LoginRequest, users: UserService = Depends(get_users)):
    user = users.login(payload.username, payload.password)
    return {"success": True, "message": "Login successful", "user": user}


# ===================== Orders =====================
@api.post("/orders", status_code=201)
def place_order(
    payload: PlaceOrderRequest,
    current_user: dict = Depends(authorize("user", "admin")),
    orders: OrderService = Depends(get_orders),
):
    order = orders.place(payload)
    return {"success": True, "message": "Order submitted successfully.", "order": order}


@api.get("/orders/{user_id}")
def list_my_orders(
    user_id: int,
    current_user: dict = Depends(authorize("user")),
    orders: OrderService = Depends(get_orders),
):
    if user_id != current_user["id"]:
        raise Forbidden("Access denied: You may only view your own orders.")
    return orders.list_for_user(user_id)


@api.put("/orders/{order_id}")
def edit_or_cancel_order(
    order_id: str,
    payload: EditOrderRequest,
    current_user: dict = Depends(authorize("user")),
    orders: OrderService = Depends(get_orders),
):
    if payload.action == "delete":
        orders.cancel(order_id, current_user["id"])
        return {"success": True, "message": "Order cancelled successfully."}
    order = orders.edit(order_id, current_user["id"], payload.items)
    return {"success": True, "message": "Order updated successfully.", "order": order}


@api.get("/orders")
def list_active_orders(
    current_user: dict = Depends(authorize(*STAFF)),
    orders: OrderService = Depends(get_orders),
):
    return orders.list_active()


@api.put("/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: OrderStatusRequest,
    current_user: dict = Depends(authorize(*STAFF)),
    orders: OrderService = Depends(get_orders),
):
    order = orders.update_status(order_id, payload.status, current_user.get("name", "staff"))
    return {"success": True, "message": f"Order {order_id} status updated to {payload.status}.", "order": order}


# ===================== Chef Calls =====================
@api.post("/call-chef")
def raise_chef_call(
    payload: ChefCallRequest,
    current_user: dict = Depends(authorize("user", "admin")),
    register: ChefCallRegister = Depends(get_chef_calls),
    outbox: Outbox = Depends(get_outbox),
):
    call = call_chef(register, outbox, payload.user_id, payload.user_name, payload.seat_number, payload.timestamp)
    return {"success": True, "message": "Chef has been notified!", "call": call}


@api.get("/chef-calls")
def list_pending_chef_calls(
    current_user: dict = Depends(authorize("kitchen", "admin")),
    register: ChefCallRegister = Depends(get_chef_calls),
):
    return register.pending()


@api.get("/chef-call-status")
def poll_chef_call_status(
    current_user: dict = Depends(authorize("user", "admin")),
    register: ChefCallRegister = Depends(get_chef_calls),
):
    return {"success": True, "call": register.consume_response(current_user["id"])}


@api.put("/chef-calls/{call_id}")
def answer_chef_call(
    call_id: str,
    payload: ChefResponseRequest,
    current_user: dict = Depends(authorize("kitchen", "admin")),
    register: ChefCallRegister = Depends(get_chef_calls),
    outbox: Outbox = Depends(get_outbox),
):
    call = respond_to_call(register, outbox, call_id, payload.action)
    return {"success": True, "message": f"Response recorded: {payload.action}", "call": call}


# ===================== Push Notifications =====================
@api.post("/save-fcm-token")
def save_fcm_token(payload: SaveTokenRequest, tokens: TokenRegistry = Depends(get_tokens)):
    if not payload.token or payload.user_id in (None, ""):
        raise ValidationError("token and userId are required")
    tokens.save(payload.user_id, payload.token, payload.user_role)
    logger.info(f"FCM token saved for user {payload.user_id} ({payload.user_role})")
    return {"success": True, "message": "FCM token saved successfully"}


@api.post("/send-notification")
def send_notification(
    payload: SendNotificationRequest,
    current_user: dict = Depends(authorize(*STAFF)),
    tokens: TokenRegistry = Depends(get_tokens),
    push: PushDispatcher = Depends(get_push),
):
    target = payload.target_user_id if payload.target_user_id not in (None, "") else payload.user_id
    if target is None or not payload.title or not payload.body:
        raise ValidationError("userId, title, and body required")

    token = tokens.token_for(target)
    if not token:
        raise NotFound("User FCM token not found")

    result = push.send(token, payload.title, payload.body, payload.data)
    if not result.success:
        raise Internal(result.error)
    return {"success": True, "message": "Notification sent", "id": result.message_id}


@api.post("/notify-kitchen")
def notify_kitchen(
    payload: KitchenNotificationRequest,
    tokens: TokenRegistry = Depends(get_tokens),
    push: PushDispatcher = Depends(get_push),
):
    if not payload.title or not payload.body:
        raise ValidationError("title and body required")

    kitchen_tokens = tokens.kitchen_tokens()
    if not kitchen_tokens:
        raise NotFound("No kitchen tokens registered")

    result = push.send_multicast(kitchen_tokens, payload.title, payload.body, payload.data)
    return {"success": True, "details": result.to_dict()}


@api.get("/notification-debug")
async def notification_debug(request: Request, tokens: TokenRegistry = Depends(get_tokens)):
    return {
        "firebaseAdmin": "initialized" if request.app.state.push.initialized else "not initialized",
        **tokens.snapshot(),
        "realtime": request.app.state.hub.get_stats(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@api.post("/test-notification")
def send_test_notification(
    payload: TestNotificationRequest,
    tokens: TokenRegistry = Depends(get_tokens),
    push: PushDispatcher = Depends(get_push),
):
    title = "🔔 Test Notification"
    body = "This is a test notification."
    data = {"type": "test", "time": datetime.now(timezone.utc).isoformat()}

    if payload.user_role == "kitchen" or payload.user_id in (None, ""):
        kitchen_tokens = tokens.kitchen_tokens()
        if not kitchen_tokens:
            raise NotFound("No kitchen tokens registered")
        result = push.send_multicast(kitchen_tokens, title, body, data)
    else:
        token = tokens.token_for(payload.user_id)
        if not token:
            raise NotFound("User token not found")
        result = push.send(token, title, body, data)

    return {
        "success": result.success,
        "message": "Test notification sent" if result.success else "Failed",
        "details": result.to_dict(),
    }


# ===================== Menu =====================
@api.get("/menu")
def fetch_menu(
    current_user: dict = Depends(authorize(*ANY_ROLE)),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.get_menu()


@api.put("/menu")
def replace_menu(
    payload: MenuUpdateRequest,
    current_user: dict = Depends(authorize(*STAFF)),
    catalog: CatalogService = Depends(get_catalog),
):
    menu = catalog.update_menu(payload)
    return {"success": True, "message": "Menu updated successfully.", "menu": menu}


# ===================== Locations =====================
@api.get("/locations")
def fetch_locations(
    current_user: dict = Depends(authorize(*ANY_ROLE)),
    catalog: CatalogService = Depends(get_catalog),
):
    return catalog.get_locations()


@api.put("/locations")
def replace_locations(
    payload: LocationsUpdateRequest,
    current_user: dict = Depends(authorize("admin")),
    catalog: CatalogService = Depends(get_catalog),
):
    locations = catalog.replace_locations(payload.locations)
    return {"success": True, "message": "Locations updated successfully.", "locations": locations}


# ===================== Feedback =====================
@api.post("/feedback", status_code=201)
def submit_feedback(
    payload: FeedbackRequest,
    current_user: dict = Depends(authorize(*ANY_ROLE)),
    feedback: FeedbackService = Depends(get_feedback),
):
    created = feedback.submit(current_user["id"], payload)
    return {"success": True, "message": "Feedback submitted successfully.", "feedback": created}


@api.get("/feedback")
def list_feedback(
    current_user: dict = Depends(authorize(*STAFF)),
    feedback: FeedbackService = Depends(get_feedback),
):
    return feedback.list_all()


@api.put("/feedback/{feedback_id}")
def update_feedback_status(
    feedback_id: str,
    payload: FeedbackStatusRequest,
    current_user: dict = Depends(authorize(*STAFF)),
    feedback: FeedbackService = Depends(get_feedback),
):
    updated = feedback.set_status(feedback_id, payload.status, current_user.get("name", "staff"))
    return {"success": True, "message": f"Feedback status updated to {payload.status}.", "feedback": updated}


# ===================== Users (admin) =====================
@api.get("/users")
def list_users(current_user: dict = Depends(authorize("admin")), users: UserService = Depends(get_users)):
    return users.list_users()


@api.post("/users", status_code=201)
def create_user(
    payload: CreateUserRequest,
    current_user: dict = Depends(authorize("admin")),
    users: UserService = Depends(get_users),
):
    user = users.create_user(payload)
    return {"success": True, "message": "User created successfully.", "user": user}


@api.put("/users/{user_id}/role")
def change_role(
    user_id: int,
    payload: RoleUpdateRequest,
    current_user: dict = Depends(authorize("admin")),
    users: UserService = Depends(get_users),
):
    users.set_role(user_id, payload.role)
    return {"success": True, "message": f"Role updated to {payload.role}."}


@api.put("/users/{user_id}/access")
def change_access(
    user_id: int,
    payload: AccessUpdateRequest,
    current_user: dict = Depends(authorize("admin")),
    users: UserService = Depends(get_users),
):
    users.set_access(user_id, payload.enabled)
    state = "enabled" if payload.enabled else "disabled"
    return {"success": True, "message": f"Access {state} for user {user_id}."}


@api.delete("/users/{user_id}")
def delete_user(user_id: int, current_user: dict = Depends(authorize("admin")), users: UserService = Depends(get_users)):
    users.delete_user(user_id)
    return {"success": True, "message": f"User {user_id} deleted."}


# ===================== Profile =====================
@api.get("/user/{user_id}")
def get_profile(
    user_id: int,
    current_user: dict = Depends(authorize(*ANY_ROLE)),
    users: UserService = Depends(get_users),
):
    require_self_or_admin(current_user, user_id)
    return users.get_profile(user_id)


@api.put("/user/{user_id}")
def update_profile(
    user_id: int,
    payload: ProfileUpdateRequest,
    current_user: dict = Depends(authorize(*ANY_ROLE)),
    users: UserService = Depends(get_users),
):
    require_self_or_admin(current_user, user_id)
    user = users.update_profile(user_id, payload)
    return {"success": True, "message": "Profile updated successfully.", "user": user}


@api.put("/user/{user_id}/profile-image")
def update_profile_image(
    user_id: int,
    payload: ProfileImageRequest,
    current_user: dict = Depends(authorize(*ANY_ROLE)),
    users: UserService = Depends(get_users),
):
    require_self_or_admin(current_user, user_id)
    user = users.update_profile_image(user_id, payload.profile_image, payload.avatar)
    return {
        "success": True,
        "message": "Profile image updated successfully.",
        "user": user,
        "profileImage": user.get("profileImage") or user.get("avatar"),
    }


@api.post("/profile-image-update")
def broadcast_profile_image(
    payload: ProfileImageBroadcast,
    current_user: dict = Depends(authorize("user", "admin")),
    users: UserService = Depends(get_users),
):
    update = users.broadcast_profile_image(current_user["id"], payload.user_name, payload.profile_image, payload.action)
    return {"success": True, "message": "Profile image update broadcasted successfully.", "updateData": update}


# ===================== Realtime =====================
def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


RELAYED_EVENTS = ("new-order", "order-updated", "order-deleted")


async def handle_client_event(websocket: WebSocket, message: Any) -> None:
    state = websocket.app.state
    hub: RealtimeHub = state.hub
    if not isinstance(message, dict):
        await hub.send_personal(websocket, "error", {"message": "Malformed message."})
        return
    event = message.get("event")
    data = message.get("data") or {}
    if not isinstance(data, dict):
        await hub.send_personal(websocket, "error", {"message": "Malformed message."})
        return

    if event == "join":
        room = hub.join(websocket, data.get("role"), _as_int(data.get("userId")))
        if room:
            await hub.send_personal(websocket, "joined", {"room": room})
        else:
            await hub.send_personal(websocket, "error", {"message": "Invalid join request."})

    elif event == "call-chef":
        user_id = _as_int(data.get("userId"))
        info = hub.connection_info.get(websocket, {})
        if user_id is None or not data.get("userName") or not data.get("seatNumber"):
            await hub.send_personal(websocket, "call-sent", {"success": False, "message": "Missing required fields."})
        elif info.get("role") == "user" and info.get("user_id") != user_id:
            await hub.send_personal(websocket, "call-sent", {"success": False, "message": "User mismatch."})
        else:
            call = call_chef(state.chef_calls, state.outbox, user_id, str(data["userName"]), str(data["seatNumber"]))
            await hub.send_personal(websocket, "call-sent", {"success": True, "call": call})

    elif event == "chef-response":
        if hub.room_of(websocket) != KITCHEN_ROOM:
            await hub.send_personal(websocket, "error", {"message": "Only kitchen sessions may respond to chef calls."})
            return
        try:
            respond_to_call(state.chef_calls, state.outbox, str(data.get("callId")), data.get("response"))
        except ApiError as exc:
            await hub.send_personal(websocket, "error", {"message": exc.message})

    elif event in RELAYED_EVENTS:
        await hub.emit_to_kitchen(event, data)

    elif event == "ping":
        await hub.send_personal(websocket, "pong", {})

    else:
        await hub.send_personal(websocket, "error", {"message": f"Unknown event '{event}'."})


async def realtime_endpoint(websocket: WebSocket):
    hub: RealtimeHub = websocket.app.state.hub
    await hub.connect(websocket)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            # Text and binary frames both carry a JSON message
            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes") or b""
            try:
                message = json.loads(raw)
            except ValueError:
                await hub.send_personal(websocket, "error", {"message": "Malformed message."})
                continue
            await handle_client_event(websocket, message)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)


# ===================== Error Handling =====================
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation error occurred.", "details": details},
    )


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.error(f"Duplicate key on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=409,
        content={"success": False, "message": "Duplicate entry found.", "details": "A record with this data already exists."},
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = f"Route {request.url.path} not found." if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": message})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled Server Error: %s %s query=%s body=%s",
        request.method,
        request.url.path,
        dict(request.query_params),
        getattr(request.state, "payload", None),
    )
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "An unexpected internal server error occurred. Check server logs."},
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every HTTP request and its outcome."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        request_logger.info(f"[{request.method}] {request.url.path} - IP: {client_ip}")

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(level, f"[{request.method}] {request.url.path} - {response.status_code} - {duration_ms:.0f}ms")
        return response


# ===================== App Factory =====================
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    store: DocumentStore = app.state.store
    if store.db is not None:
        try:
            await run_in_threadpool(store.ensure_indexes)
            if settings.seed_on_startup:
                await run_in_threadpool(seed_database, store)
        except PyMongoError as e:
            logger.error(f"Database initialization failed: {e}")
    await app.state.outbox.start()
    logger.info("Café Ordering API started (push %s)", "enabled" if app.state.push.initialized else "disabled")
    yield
    await app.state.outbox.stop()


def create_app(
    settings: Optional[Settings] = None,
    database=None,
    push: Optional[PushDispatcher] = None,
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Café Ordering API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    if push is None:
        push = PushDispatcher()
        push.initialize(settings.firebase_service_account, settings.firebase_credentials_path)

    hub = RealtimeHub()
    tokens = TokenRegistry()
    app.state.settings = settings
    app.state.store = DocumentStore(database) if database is not None else DocumentStore.from_url(
        settings.database_url, settings.database_name
    )
    app.state.push = push
    app.state.hub = hub
    app.state.tokens = tokens
    app.state.chef_calls = ChefCallRegister()
    app.state.outbox = Outbox(hub, push, tokens)
    app.state.started_at = time.time()

    app.include_router(service)
    app.include_router(api, prefix=settings.api_prefix)
    app.add_api_websocket_route("/ws", realtime_endpoint)
    app.add_api_websocket_route(f"{settings.api_prefix}/ws", realtime_endpoint)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port)
