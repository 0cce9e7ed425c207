"""
Database Schemas for the Home Shoppers storefront

Each Pydantic model describes the documents of one MongoDB collection. The
collection name is the lowercase plural of the class name (e.g. Product ->
"products"). `_id` and `created_at` are added by the database layer.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


ORDER_STATUSES = [s.value for s in OrderStatus]

# ----------------------------- Auth -----------------------------
class Admin(BaseModel):
    email: str = Field(..., description="Admin email (unique)")
    password_hash: str = Field(..., description="bcrypt password hash")

# ---------------------------- Landing ---------------------------
class Announcement(BaseModel):
    message: str = Field(..., min_length=1, description="Marquee text")

class Countdown(BaseModel):
    title: Optional[str] = Field(None, description="Headline shown above the timer")
    end_date: datetime = Field(..., description="Moment the offer ends")

class Video(BaseModel):
    youtube_url: str = Field(..., min_length=1, description="YouTube watch or embed URL")

# ---------------------------- Catalog ---------------------------
class Product(BaseModel):
    name: str = Field(..., min_length=1, description="Product name")
    price: float = Field(..., gt=0, description="Regular price")
    offer_price: Optional[float] = Field(None, gt=0, description="Discounted price, if any")
    image_url: Optional[str] = Field(None, description="Product image URL")

# ---------------------------- Orders ----------------------------
class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    order_number: str = Field(..., description="HSOID-DDMMYYYY### (unique)")
    product_id: str = Field(..., description="Related product _id")
    name: str = Field(..., description="Customer name")
    address: str = Field(..., description="Delivery address")
    phone: str = Field(..., description="Local mobile number")
    quantity: int = Field(..., ge=1)
    total_amount: float = Field(..., gt=0)
    status: OrderStatus = Field(OrderStatus.PENDING.value, description="Order status")

class OrderRequest(BaseModel):
    """Cash on delivery order as posted by the order form.

    Every field is optional here so that a missing field is reported by the
    order service with one message instead of per-field parser errors.
    """
    product_id: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    quantity: Optional[int] = None
    total_amount: Optional[float] = None
