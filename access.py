"""
Access Control Gate

Capability check, not authentication: the caller asserts a numeric identity
and a role (query string on GET, JSON body otherwise) and the claim is
cross-checked against the stored User record before the operation runs.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import Depends, Request
from starlette.concurrency import run_in_threadpool

from database import USERS, DocumentStore, storage_errors
from errors import Forbidden, Unauthenticated

logger = logging.getLogger(__name__)

SAFE_USER_FIELDS = {"password": 0}


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


async def _read_claims(request: Request) -> Tuple[Any, Any]:
    if request.method == "GET":
        source: Dict[str, Any] = dict(request.query_params)
    else:
        try:
            source = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            source = {}
        if not isinstance(source, dict):
            source = {}
    request.state.payload = source
    return source.get("userId"), source.get("userRole")


def _parse_identity(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value or None


def check_access(user: Optional[dict], claimed_role: str, allowed_roles: Tuple[str, ...]) -> dict:
    if not user:
        raise Forbidden("Access denied: User not found in database.")
    if user.get("role") != claimed_role:
        raise Forbidden("Access denied: Role mismatch with server data.")
    if not user.get("enabled", True):
        raise Forbidden("Access denied: Your account has been disabled.")
    if user.get("role") not in allowed_roles:
        raise Forbidden(f"Role '{user.get('role')}' not authorized for this action.")
    return user


def authorize(*allowed_roles: str):
    """Build a dependency admitting callers whose stored role is in allowed_roles.

    Resolves to the caller's User record (password excluded).
    """

    async def dependency(request: Request, store: DocumentStore = Depends(get_store)) -> dict:
        raw_id, claimed_role = await _read_claims(request)
        user_id = _parse_identity(raw_id)
        if user_id is None or not claimed_role:
            missing = "User ID" if user_id is None else "User Role"
            raise Unauthenticated(f"Authentication required: {missing} missing in request body/query.")

        with storage_errors("Internal authorization error."):
            user = await run_in_threadpool(
                store.find_one, USERS, {"id": user_id}, SAFE_USER_FIELDS
            )
        user = check_access(user, claimed_role, allowed_roles)
        request.state.current_user = user
        return user

    return dependency


def require_self_or_admin(current_user: dict, target_id: int) -> None:
    if current_user.get("role") != "admin" and current_user.get("id") != target_id:
        raise Forbidden("Access denied: You may only manage your own account.")
