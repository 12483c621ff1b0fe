"""
Menu and seating locations.

The menu is a singleton document: it is created with defaults on first read
and upserted on write. Reads normalize legacy documents whose add-ons and
sugar levels were stored as bare strings/numbers.

The create-if-absent path is a check-then-act without a transaction; two
concurrent first reads can each insert a default menu. Low contention makes
this acceptable, and later reads and writes still target a single document.
"""

import logging
from copy import deepcopy
from typing import Any, Dict, List

from database import LOCATIONS, MENU, DocumentStore, storage_errors
from errors import Conflict
from schemas import Location, MenuUpdateRequest

logger = logging.getLogger(__name__)

DEFAULT_ITEM_IMAGES = {
    "tea": "https://tmdone-cdn.s3.me-south-1.amazonaws.com/store-covers/133003776906429295.jpg",
    "coffee": "https://i.pinimg.com/474x/7a/29/df/7a29dfc903d98c6ba13b687ef1fa1d1a.jpg",
    "water": "https://images.stockcake.com/public/d/f/f/dffca756-1b7f-4366-8b89-4ad6f9bbf88a_large/chilled-water-glass-stockcake.jpg",
}

DEFAULT_ADD_ONS = [{"name": "Ginger", "available": True}, {"name": "Salt", "available": True}]
DEFAULT_SUGAR_LEVELS = [{"level": level, "available": True} for level in range(4)]


def _entries(*names: str) -> List[Dict[str, Any]]:
    return [{"name": name, "available": True} for name in names]


DEFAULT_MENU = {
    "categories": [
        {"name": "Coffee", "icon": "FaCoffee", "color": "#8B4513", "enabled": True,
         "items": _entries("Black", "Milk", "Simple", "Cold")},
        {"name": "Tea", "icon": "FaMugHot", "color": "#228B22", "enabled": True,
         "items": _entries("Black", "Milk", "Green")},
        {"name": "Water", "icon": "FaTint", "color": "#87CEEB", "enabled": True,
         "items": _entries("Warm", "Cold", "Hot", "Lemon")},
    ],
    "addOns": DEFAULT_ADD_ONS,
    "sugarLevels": DEFAULT_SUGAR_LEVELS,
    "itemImages": DEFAULT_ITEM_IMAGES,
}

DEFAULT_LOCATIONS = [
    {"id": n, "name": f"Seat {n}", "location": f"Seat_{n}", "access": "Own seat"} for n in range(1, 21)
] + [
    {"id": 21, "name": "Reception", "location": "Reception", "access": "All"},
    {"id": 22, "name": "Conference Room", "location": "Conference", "access": "Conference"},
    {"id": 23, "name": "Pod Room", "location": "Pod_Room", "access": "Pod room/Conference"},
]


def normalize_add_ons(add_ons) -> List[Dict[str, Any]]:
    return [{"name": a, "available": True} if isinstance(a, str) else a for a in add_ons]


def normalize_sugar_levels(levels) -> List[Dict[str, Any]]:
    return [
        {"level": lvl, "available": True} if isinstance(lvl, (int, float, str)) else lvl
        for lvl in levels
    ]


def normalize_menu(menu: dict) -> dict:
    """Upgrade legacy scalar entries in place and fill missing sections."""
    add_ons = menu.get("addOns")
    menu["addOns"] = normalize_add_ons(add_ons) if isinstance(add_ons, list) else deepcopy(DEFAULT_ADD_ONS)

    levels = menu.get("sugarLevels")
    menu["sugarLevels"] = normalize_sugar_levels(levels) if isinstance(levels, list) else deepcopy(DEFAULT_SUGAR_LEVELS)

    for category in menu.get("categories") or []:
        category["items"] = normalize_add_ons(category.get("items") or [])

    if not menu.get("itemImages"):
        menu["itemImages"] = dict(DEFAULT_ITEM_IMAGES)
    return menu


class CatalogService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def get_menu(self) -> dict:
        with storage_errors("Server error fetching menu."):
            menu = self.store.find_one(MENU)
            if not menu:
                logger.info("Default menu created on demand.")
                return self.store.create_document(MENU, deepcopy(DEFAULT_MENU))

            menu = normalize_menu(menu)
            fields = {k: menu[k] for k in ("categories", "addOns", "sugarLevels", "itemImages") if k in menu}
            self.store.update_document(MENU, menu["_id"], fields)
        return menu

    def update_menu(self, payload: MenuUpdateRequest) -> dict:
        fields = payload.model_dump(by_alias=True, include={"categories", "add_ons", "sugar_levels", "item_images"})
        fields["addOns"] = normalize_add_ons(fields["addOns"])
        fields["sugarLevels"] = normalize_sugar_levels(fields["sugarLevels"])
        for category in fields["categories"]:
            category["items"] = normalize_add_ons(category["items"])
        with storage_errors("Server error updating menu."):
            menu = self.store.find_one_and_update(MENU, {}, {"$set": fields}, upsert=True)
        logger.info("Menu updated.")
        return menu

    def get_locations(self) -> List[dict]:
        with storage_errors("Server error fetching locations."):
            locations = self.store.get_documents(LOCATIONS, sort=[("id", 1)])
            if not locations:
                locations = self.store.replace_all(LOCATIONS, deepcopy(DEFAULT_LOCATIONS))
                logger.info("Default locations created on demand.")
        return locations

    def replace_locations(self, locations: List[Location]) -> List[dict]:
        ids = [loc.id for loc in locations]
        if len(ids) != len(set(ids)):
            raise Conflict("Duplicate location id.")
        with storage_errors("Server error updating locations."):
            stored = self.store.replace_all(LOCATIONS, [loc.model_dump() for loc in locations])
        logger.info(f"Locations updated ({len(stored)} entries).")
        return stored
