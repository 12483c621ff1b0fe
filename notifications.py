"""Firebase Cloud Messaging (FCM) push delivery and the device-token registry."""

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

NOT_INITIALIZED = "Firebase Admin not initialized"
MULTICAST_BATCH_SIZE = 500
ICON = "/icons/icon-192-v2.png"


@dataclass
class PushResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class MulticastResult:
    success: bool
    success_count: int = 0
    failure_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": self.success,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
        }
        if self.error:
            result["error"] = self.error
        return result


def _string_data(data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    # FCM only accepts string values in the data map
    payload = {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in (data or {}).items()}
    payload["click_action"] = "FLUTTER_NOTIFICATION_CLICK"
    return payload


class PushDispatcher:
    """Send push notifications via Firebase Cloud Messaging.

    Every send returns a result object; nothing raises past this class.
    When the SDK is missing or credentials are absent, every call returns
    success=False with NOT_INITIALIZED and the rest of the app keeps running.
    """

    def __init__(self):
        self._initialized = False
        self._app = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, service_account_json: Optional[str] = None, credentials_path: Optional[str] = None) -> bool:
        """Initialize Firebase Admin SDK from inline JSON or a credentials file."""
        if not service_account_json and not credentials_path:
            logger.warning("Firebase credentials not configured, push notifications disabled")
            return False
        try:
            import firebase_admin
            from firebase_admin import credentials as fb_credentials

            if service_account_json:
                cred = fb_credentials.Certificate(json.loads(service_account_json))
            else:
                cred = fb_credentials.Certificate(credentials_path)
            try:
                self._app = firebase_admin.get_app()
            except ValueError:
                self._app = firebase_admin.initialize_app(cred)
            self._initialized = True
            logger.info("Firebase Admin SDK initialized")
        except ImportError:
            logger.info("firebase-admin not installed, push notifications disabled")
        except Exception as e:
            logger.warning(f"Firebase initialization failed: {e}. Push notifications disabled.")
        return self._initialized

    def _platform_options(self, messaging, title: str, body: str) -> Dict[str, Any]:
        return {
            "android": messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    channel_id="cafe-default",
                    vibrate_timings_millis=[200, 100, 200],
                    priority="max",
                ),
            ),
            "apns": messaging.APNSConfig(
                headers={"apns-priority": "10"},
                payload=messaging.APNSPayload(aps=messaging.Aps(sound="default")),
            ),
            "webpush": messaging.WebpushConfig(
                notification=messaging.WebpushNotification(
                    title=title,
                    body=body,
                    icon=ICON,
                    badge=ICON,
                    vibrate=[200, 100, 200],
                    require_interaction=True,
                    tag=str(int(time.time() * 1000)),
                    renotify=True,
                ),
            ),
        }

    def send(self, token: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> PushResult:
        """Send notification to a single device."""
        if not self._initialized:
            logger.debug("Firebase not initialized, skipping push notification")
            return PushResult(success=False, error=NOT_INITIALIZED)
        try:
            from firebase_admin import messaging

            message = messaging.Message(
                notification=messaging.Notification(title=title, body=body),
                data=_string_data(data),
                token=token,
                **self._platform_options(messaging, title, body),
            )
            response = messaging.send(message, app=self._app)
            logger.info(f"Push notification sent: {response}")
            return PushResult(success=True, message_id=response)
        except Exception as e:
            logger.error(f"Push notification failed: {e}")
            return PushResult(success=False, error=str(e))

    def send_multicast(
        self, tokens: Iterable[str], title: str, body: str, data: Optional[Dict[str, Any]] = None
    ) -> MulticastResult:
        """Send notification to many devices, in batches of MULTICAST_BATCH_SIZE."""
        if not self._initialized:
            return MulticastResult(success=False, error=NOT_INITIALIZED)
        token_list = list(tokens)
        if not token_list:
            return MulticastResult(success=False, error="No tokens available")
        try:
            from firebase_admin import messaging

            success_count = failure_count = 0
            for start in range(0, len(token_list), MULTICAST_BATCH_SIZE):
                message = messaging.MulticastMessage(
                    notification=messaging.Notification(title=title, body=body),
                    data=_string_data(data),
                    tokens=token_list[start:start + MULTICAST_BATCH_SIZE],
                    **self._platform_options(messaging, title, body),
                )
                response = messaging.send_each_for_multicast(message, app=self._app)
                success_count += response.success_count
                failure_count += response.failure_count
            logger.info(f"FCM multicast: {success_count} success, {failure_count} failed")
            return MulticastResult(success=True, success_count=success_count, failure_count=failure_count)
        except Exception as e:
            logger.error(f"Multicast notification failed: {e}")
            return MulticastResult(success=False, failure_count=len(token_list), error=str(e))


class TokenRegistry:
    """In-memory device tokens: one current token per user plus role sets.

    Last write wins per user; the replaced token also leaves the role sets,
    and a token saved again under another role leaves its old role set.
    Guarded by a lock since sync routes run on a thread pool.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: Dict[str, str] = {}
        self._roles: Dict[str, set] = {"kitchen": set(), "admin": set()}

    def save(self, user_id: Any, token: str, role: Optional[str] = None) -> None:
        key = str(user_id)
        with self._lock:
            previous = self._tokens.get(key)
            for tokens in self._roles.values():
                tokens.discard(token)
                if previous:
                    tokens.discard(previous)
            self._tokens[key] = token
            if role in self._roles:
                self._roles[role].add(token)

    def token_for(self, user_id: Any) -> Optional[str]:
        with self._lock:
            return self._tokens.get(str(user_id))

    def role_tokens(self, role: str) -> List[str]:
        with self._lock:
            return list(self._roles.get(role, ()))

    def kitchen_tokens(self) -> List[str]:
        return self.role_tokens("kitchen")

    def snapshot(self) -> Dict[str, Any]:
        """Masked view of registered tokens for diagnostics."""
        with self._lock:
            return {
                "kitchenTokens": [t[:20] + "..." for t in self._roles["kitchen"]],
                "adminTokens": [t[:20] + "..." for t in self._roles["admin"]],
                "allTokens": [{"userId": uid, "token": t[:20] + "..."} for uid, t in self._tokens.items()],
            }
