"""
Request and response schemas for the Farm Marketplace API

Records are stored as camelCase dicts (see database.py); the Pydantic models
below describe what clients send and what they get back. Fields use snake_case
in Python with camelCase aliases on the wire.

Input models keep every field optional so that the handlers can report
missing or malformed values with their own messages, in a fixed order.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Literal, Optional

UserType = Literal["farmer", "buyer"]
USER_TYPES = ("farmer", "buyer")


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SignupRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    user_type: Optional[str] = Field(None, alias="userType")
    additional_info: Any = Field(None, alias="additionalInfo")


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserPublic(CamelModel):
    """A user record without its password hash."""
    id: int
    name: str
    email: str
    user_type: UserType = Field(..., alias="userType")
    additional_info: Any = Field(None, alias="additionalInfo")
    created_at: str = Field(..., alias="createdAt")


class AuthResponse(BaseModel):
    message: str
    token: str
    user: UserPublic


class MessageResponse(BaseModel):
    message: str


class TokenClaims(CamelModel):
    user_id: int = Field(..., alias="userId")
    email: str
    user_type: str = Field(..., alias="userType")


class ProductIn(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    stock: Optional[int] = None
    min_stock: Optional[int] = Field(None, alias="minStock")
    image: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str


class DashboardStats(CamelModel):
    total_products: int = Field(..., alias="totalProducts")
    total_orders: int = Field(..., alias="totalOrders")
    total_revenue: float = Field(..., alias="totalRevenue")
    average_rating: float = Field(..., alias="averageRating")
    recent_orders: list = Field(default_factory=list, alias="recentOrders")
    recent_reviews: list = Field(default_factory=list, alias="recentReviews")
