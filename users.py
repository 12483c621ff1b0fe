"""
User accounts: login, admin management and self-service profile updates.

Passwords are stored as bcrypt hashes. Records written by older deployments
may still hold a plaintext password; such a record is upgraded to a hash on
its first successful login.
"""

import logging
import secrets
from typing import List, Optional, Tuple

from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from database import USERS, DocumentStore, storage_errors
from errors import Conflict, Forbidden, NotFound, Unauthenticated, ValidationError
from outbox import Outbox, RealtimeEvent
from realtime import KITCHEN_ROOM
from schemas import ROLES, CreateUserRequest, ProfileUpdateRequest, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

FIRST_USER_ID = 101
SAFE_FIELDS = {"password": 0}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, stored: str) -> Tuple[bool, Optional[str]]:
    """Check a password, returning (matches, replacement hash or None)."""
    if not stored:
        return False, None
    if pwd_context.identify(stored) is None:
        matches = secrets.compare_digest(password.encode(), stored.encode())
        return matches, hash_password(password) if matches else None
    return pwd_context.verify_and_update(password, stored)


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k != "password"}


def _duplicate_message(exc: DuplicateKeyError, default: str) -> str:
    detail = str(exc.details or exc)
    if "username" in detail:
        return "Username already exists."
    if "email" in detail:
        return "Email already exists."
    return default


class UserService:
    def __init__(self, store: DocumentStore, outbox: Outbox):
        self.store = store
        self.outbox = outbox

    # ---------- auth ----------

    def login(self, username: Optional[str], password: Optional[str]) -> dict:
        if not username or not password:
            raise ValidationError("Username and password are required.")

        with storage_errors("Server error during login."):
            user = self.store.find_one(USERS, {"username": username})
        matches, new_hash = verify_password(password, user.get("password", "")) if user else (False, None)
        if not matches:
            raise Unauthenticated("Invalid username or password.")
        if not user.get("enabled", True):
            raise Forbidden("Your account has been disabled by an administrator.")

        if new_hash:
            with storage_errors("Server error during login."):
                self.store.find_one_and_update(USERS, {"id": user["id"]}, {"$set": {"password": new_hash}})
        logger.info(f"User {user['id']} ({user['role']}) logged in.")
        return {"id": user["id"], "name": user["name"], "role": user["role"], "username": user["username"]}

    # ---------- admin ----------

    def list_users(self) -> List[dict]:
        with storage_errors("Server error fetching users."):
            return self.store.get_documents(USERS, sort=[("id", 1)], projection=SAFE_FIELDS)

    def next_id(self) -> int:
        last = self.store.find_one(USERS, sort=[("id", -1)], projection={"id": 1})
        return last["id"] + 1 if last else FIRST_USER_ID

    def create_user(self, payload: CreateUserRequest) -> dict:
        if not payload.username or not payload.password or not payload.name or payload.role not in ROLES:
            raise ValidationError("Invalid or incomplete user data.")

        email = str(payload.email) if payload.email else None
        with storage_errors("Server error creating user."):
            clauses = [{"username": payload.username}] + ([{"email": email}] if email else [])
            existing = self.store.find_one(USERS, {"$or": clauses})
            if existing:
                if existing.get("username") == payload.username:
                    raise Conflict("Username already exists.")
                raise Conflict("Email already exists.")

            user = User(
                id=self.next_id(),
                username=payload.username,
                password=hash_password(payload.password),
                name=payload.name,
                role=payload.role,
                enabled=payload.enabled,
                email=email,
            )
            try:
                created = self.store.create_document(USERS, user)
            except DuplicateKeyError as exc:
                logger.error(f"Create User Error - duplicate key: {exc}")
                raise Conflict(_duplicate_message(
                    exc, "A duplicate value was found. Please check username or email."
                )) from exc

        logger.info(f"New user created: {created['id']} ({created['role']}) by Admin.")
        return public_user(created)

    def _update(self, user_id: int, changes: dict, message: str) -> dict:
        with storage_errors(message):
            updated = self.store.find_one_and_update(
                USERS, {"id": user_id}, {"$set": changes}, projection=SAFE_FIELDS
            )
        if not updated:
            raise NotFound("User not found.")
        return updated

    def set_role(self, user_id: int, role: Optional[str]) -> dict:
        if role not in ROLES:
            raise ValidationError("Invalid role provided.")
        updated = self._update(user_id, {"role": role}, "Server error updating role.")
        logger.warning(f"User {user_id} role changed to: {role} by Admin.")
        return updated

    def set_access(self, user_id: int, enabled) -> dict:
        if not isinstance(enabled, bool):
            raise ValidationError("Enabled status must be boolean.")
        updated = self._update(user_id, {"enabled": enabled}, "Server error updating access.")
        logger.warning(f"User {user_id} access set to: {enabled} by Admin.")
        return updated

    def delete_user(self, user_id: int) -> None:
        with storage_errors("Server error deleting user."):
            removed = self.store.find_one_and_delete(USERS, {"id": user_id})
        if not removed:
            raise NotFound("User not found.")
        logger.warning(f"User {user_id} DELETED by Admin.")

    # ---------- profile ----------

    def get_profile(self, user_id: int) -> dict:
        with storage_errors("Server error fetching user details."):
            user = self.store.find_one(USERS, {"id": user_id}, SAFE_FIELDS)
        if not user:
            raise NotFound("User not found.")
        return user

    def update_profile(self, user_id: int, payload: ProfileUpdateRequest) -> dict:
        changes = {}
        if payload.name:
            changes["name"] = payload.name
        if payload.password:
            changes["password"] = hash_password(payload.password)

        update = {"$set": changes}
        with storage_errors("Server error updating profile."):
            if payload.email:
                email = str(payload.email)
                clash = self.store.find_one(USERS, {"email": email, "id": {"$ne": user_id}}, {"id": 1})
                if clash:
                    raise Conflict("Email already in use by another account.")
                changes["email"] = email
            else:
                update["$unset"] = {"email": ""}
            try:
                updated = self.store.find_one_and_update(USERS, {"id": user_id}, update, projection=SAFE_FIELDS)
            except DuplicateKeyError as exc:
                raise Conflict("Email already in use by another account.") from exc
        if not updated:
            raise NotFound("User not found.")

        logger.info(f"User {user_id} updated profile details.")
        return updated

    def update_profile_image(self, user_id: int, profile_image: Optional[str], avatar: Optional[str]) -> dict:
        if not profile_image and not avatar:
            raise ValidationError("Profile image or avatar URL is required.")
        changes = {}
        if profile_image:
            changes["profileImage"] = profile_image
        if avatar:
            changes["avatar"] = avatar
        updated = self._update(user_id, changes, "Server error updating profile image.")
        logger.info(f"User {user_id} updated profile image.")
        return updated

    def broadcast_profile_image(self, user_id: int, user_name: Optional[str], profile_image: Optional[str],
                                action: Optional[str]) -> dict:
        if not user_name:
            raise ValidationError("User ID and name are required.")
        update = {
            "userId": user_id,
            "userName": user_name,
            "profileImage": profile_image,
            "action": action or "updated",
        }
        self.outbox.publish(RealtimeEvent("profile-image-updated", update, KITCHEN_ROOM))
        logger.info(f"Profile image update broadcasted for user {user_name} ({user_id})")
        return update
