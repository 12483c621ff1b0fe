"""Startup seeding of default users, menu and locations."""

import logging
from copy import deepcopy
from typing import Dict

from catalog import DEFAULT_LOCATIONS, DEFAULT_MENU
from database import LOCATIONS, MENU, USERS, DocumentStore
from schemas import User
from users import FIRST_USER_ID, hash_password

logger = logging.getLogger(__name__)

DEFAULT_USERS = [
    {"username": "admin", "password": "adminpassword", "name": "Super Admin", "role": "admin"},
    {"username": "kitchen", "password": "kitchenpassword", "name": "Kitchen Manager", "role": "kitchen"},
]


def seed_users(store: DocumentStore) -> bool:
    if store.find_one(USERS, {"username": "admin"}):
        logger.info("Users already exist, skipping user seeding.")
        return False
    last = store.find_one(USERS, sort=[("id", -1)], projection={"id": 1})
    next_id = last["id"] + 1 if last else FIRST_USER_ID
    for offset, entry in enumerate(DEFAULT_USERS):
        user = User(id=next_id + offset, **dict(entry, password=hash_password(entry["password"])))
        store.create_document(USERS, user)
    logger.info("Initial users inserted (admin, kitchen).")
    return True


def seed_menu(store: DocumentStore) -> bool:
    # An existing menu holds staff edits; never overwrite it
    if store.find_one(MENU):
        return False
    store.create_document(MENU, deepcopy(DEFAULT_MENU))
    logger.info("Default menu inserted.")
    return True


def seed_locations(store: DocumentStore) -> bool:
    if store.find_one(LOCATIONS):
        logger.info("Locations already exist, skipping location seeding.")
        return False
    store.replace_all(LOCATIONS, deepcopy(DEFAULT_LOCATIONS))
    logger.info("Default locations inserted.")
    return True


def seed_database(store: DocumentStore) -> Dict[str, bool]:
    logger.info("Starting database seeding...")
    results = {
        "users": seed_users(store),
        "menu": seed_menu(store),
        "locations": seed_locations(store),
    }
    logger.info("Database seeding completed: %s", results)
    return results
