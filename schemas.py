"""
Database Schemas for the Café Ordering System

Each record model below corresponds to a MongoDB collection.
The collection name is the lowercase class name (e.g., User -> "user").
Field names travel over the wire and into storage in camelCase
(userId, seatNumber, ...), so every model uses a camelCase alias generator.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

Role = Literal["user", "kitchen", "admin"]
OrderStatus = Literal["Placed", "Making", "Ready", "Delivered"]
Slot = Literal["morning (9:00-12:00)", "afternoon (1:00 - 5:30)"]
ItemKind = Literal["coffee", "tea", "water", "shikanji", "jaljeera", "maggie", "soup", "oats"]
ChefAction = Literal["coming", "coming_5min", "dismiss"]
FeedbackType = Literal[
    "Order Issue",
    "Food/Drink Quality",
    "Service/Staff Feedback",
    "Website/App Issue",
    "Other Feedback",
]
FeedbackStatus = Literal["New", "In Progress", "Resolved"]

ROLES = ("user", "kitchen", "admin")
ORDER_STATUSES = ("Placed", "Making", "Ready", "Delivered")
SLOTS = ("morning (9:00-12:00)", "afternoon (1:00 - 5:30)")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Claims(CamelModel):
    """Caller identity asserted in the body of write requests."""
    user_id: Optional[int] = None
    user_role: Optional[str] = None


# ===================== Records =====================

class User(CamelModel):
    id: int = Field(..., description="Numeric cross-reference id")
    username: str = Field(..., description="Unique login name")
    password: str = Field(..., description="BCrypt password hash")
    name: str = Field(..., description="Display name")
    role: Role = "user"
    enabled: bool = True
    email: Optional[EmailStr] = Field(None, description="Unique when present")
    profile_image: Optional[str] = None
    avatar: Optional[str] = None


class OrderItem(CamelModel):
    item: ItemKind
    type: Optional[str] = None
    sugar_level: Optional[str] = Field(None, description="Kept as text, e.g. '2' or 'None'")
    selected_add_ons: List[str] = []
    quantity: int = Field(1, ge=1)
    location: str
    table_no: Optional[int] = None
    custom_location: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("sugar_level", mode="before")
    @classmethod
    def _sugar_level_as_text(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class Order(CamelModel):
    user_id: int
    user_name: str
    slot: Slot
    items: List[OrderItem] = Field(..., min_length=1)
    status: OrderStatus = "Placed"
    tags: List[str] = ["New"]
    timestamp: datetime


class MenuEntry(BaseModel):
    name: str
    available: bool = True


class MenuCategory(BaseModel):
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None
    items: List[Union[MenuEntry, str]] = []
    enabled: bool = True


class SugarLevel(BaseModel):
    level: Union[int, str]
    available: bool = True


class Menu(CamelModel):
    categories: List[MenuCategory] = []
    add_ons: List[Union[MenuEntry, str]] = []
    sugar_levels: List[Union[SugarLevel, int]] = []
    item_images: Dict[str, str] = {}


class Location(BaseModel):
    id: int
    name: str
    location: str
    access: str


class Feedback(CamelModel):
    user_id: int
    user_name: str
    type: FeedbackType
    details: str
    location: str
    order_reference: str = "N/A"
    status: FeedbackStatus = "New"
    timestamp: datetime


# ===================== Requests =====================

class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class PlaceOrderRequest(Claims):
    user_id: int
    user_name: str = Field(..., min_length=1)
    slot: Slot
    items: List[OrderItem] = Field(..., min_length=1)


class EditOrderRequest(Claims):
    action: Optional[Literal["delete"]] = None
    items: Optional[List[OrderItem]] = None


class OrderStatusRequest(Claims):
    status: Optional[str] = None


class ChefCallRequest(Claims):
    user_id: int
    user_name: str = Field(..., min_length=1)
    seat_number: str = Field(..., min_length=1)
    timestamp: Optional[str] = None


class ChefResponseRequest(Claims):
    action: Optional[str] = None


class SaveTokenRequest(CamelModel):
    token: Optional[str] = None
    user_id: Optional[Union[int, str]] = None
    user_role: Optional[str] = None


class SendNotificationRequest(Claims):
    target_user_id: Optional[Union[int, str]] = None
    title: Optional[str] = None
    body: Optional[str] = None
    data: Dict[str, Any] = {}


class KitchenNotificationRequest(CamelModel):
    title: Optional[str] = None
    body: Optional[str] = None
    data: Dict[str, Any] = {}


class TestNotificationRequest(CamelModel):
    user_id: Optional[Union[int, str]] = None
    user_role: Optional[str] = None


class MenuUpdateRequest(Claims):
    categories: List[MenuCategory] = []
    add_ons: List[Union[MenuEntry, str]] = []
    sugar_levels: List[Union[SugarLevel, int]] = []
    item_images: Dict[str, str] = {}


class LocationsUpdateRequest(Claims):
    locations: List[Location]


class FeedbackRequest(Claims):
    user_name: Optional[str] = None
    type: Optional[FeedbackType] = None
    details: Optional[str] = None
    location: Optional[str] = None
    order_reference: Optional[str] = None
    status: Optional[FeedbackStatus] = None


class FeedbackStatusRequest(Claims):
    status: Optional[str] = None


class CreateUserRequest(Claims):
    username: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    enabled: bool = True
    email: Optional[EmailStr] = None


class RoleUpdateRequest(Claims):
    role: Optional[str] = None


class AccessUpdateRequest(Claims):
    enabled: Optional[Any] = None


class ProfileUpdateRequest(Claims):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None


class ProfileImageRequest(Claims):
    profile_image: Optional[str] = None
    avatar: Optional[str] = None


class ProfileImageBroadcast(Claims):
    user_name: Optional[str] = None
    profile_image: Optional[str] = None
    action: Optional[str] = None
