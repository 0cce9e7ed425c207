"""
Cash on delivery order intake.

Order numbers look like HSOID-05062024007: the prefix, the server-local date as
DDMMYYYY and a per-day sequence padded to three digits. Past 999 the sequence
simply grows a fourth digit.

Two sequence sources are supported:

- "counter": an atomic per-day counter document, incremented with
  find_one_and_update. Concurrent submissions never share a number.
- "count": number of orders created so far today, plus one. Two requests that
  count before either inserts compute the same number; the unique index on
  order_number then rejects the second insert with a PersistenceError.
"""
import logging
import math
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from database import Database, oid_to_str, to_object_id, to_utc_naive
from errors import NotFoundError, PersistenceError, ValidationError
from schemas import ORDER_STATUSES, Order, OrderRequest, OrderStatus

logger = logging.getLogger(__name__)

ORDER_PREFIX = "HSOID-"
PHONE_PATTERN = re.compile(r"^01[3-9]\d{8}$")
SEQUENCE_STRATEGIES = ("counter", "count")
MAX_QUANTITY = 1000

REQUIRED_FIELDS = ("product_id", "name", "address", "phone", "quantity", "total_amount")


def local_now() -> datetime:
    return datetime.now().astimezone()


def _as_local(now: Optional[datetime]) -> datetime:
    if now is None:
        return local_now()
    return now.astimezone()


def _local_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min).astimezone()


def day_key(now: datetime) -> str:
    return now.strftime("%d%m%Y")


def day_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """[start, end) of the server-local day containing `now`, as naive UTC."""
    local = _as_local(now)
    start = _local_midnight(local.date())
    end = _local_midnight(local.date() + timedelta(days=1))
    return to_utc_naive(start), to_utc_naive(end)


def format_order_number(now: datetime, sequence: int) -> str:
    return f"{ORDER_PREFIX}{day_key(now)}{sequence:03d}"


def count_orders_for_day(db: Database, now: datetime) -> int:
    start, end = day_bounds(now)
    try:
        return db["orders"].count_documents({"created_at": {"$gte": start, "$lt": end}})
    except PyMongoError as e:
        logger.exception("Error counting today's orders")
        raise PersistenceError("Failed to create order", details=str(e)) from e


def next_sequence(db: Database, now: datetime, strategy: str = "counter") -> int:
    if strategy not in SEQUENCE_STRATEGIES:
        raise ValueError(f"Unknown order sequence strategy: {strategy}")
    if strategy == "count":
        return count_orders_for_day(db, now) + 1
    try:
        counter = db["order_counters"].find_one_and_update(
            {"_id": day_key(now)},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.exception("Error incrementing order counter")
        raise PersistenceError("Failed to create order", details=str(e)) from e
    return counter["seq"]


def generate_order_number(db: Database, now: Optional[datetime] = None, strategy: str = "counter") -> str:
    local = _as_local(now)
    return format_order_number(local, next_sequence(db, local, strategy))


def effective_price(product: Dict[str, Any]) -> float:
    price = float(product["price"])
    offer = product.get("offer_price")
    if offer and float(offer) < price:
        return float(offer)
    return price


def validate_order(payload: OrderRequest) -> Dict[str, Any]:
    data = payload.model_dump()
    for key in ("product_id", "name", "address", "phone"):
        if isinstance(data[key], str):
            data[key] = data[key].strip()
    if not all(data[f] for f in REQUIRED_FIELDS):
        raise ValidationError("All fields are required")
    if len(data["name"]) < 2:
        raise ValidationError("Name must be at least 2 characters")
    if len(data["address"]) < 10:
        raise ValidationError("Address must be at least 10 characters")
    if not PHONE_PATTERN.match(data["phone"]):
        raise ValidationError("Invalid phone number")
    if data["quantity"] < 1:
        raise ValidationError("Quantity must be at least 1")
    if data["quantity"] > MAX_QUANTITY:
        raise ValidationError(f"Quantity must be at most {MAX_QUANTITY}")
    if not math.isfinite(data["total_amount"]):
        raise ValidationError("Invalid total amount")
    if data["total_amount"] <= 0:
        raise ValidationError("Total amount must be positive")
    return data


def load_product(db: Database, product_id: str) -> Dict[str, Any]:
    try:
        oid = to_object_id(product_id, "Product")
        product = db["products"].find_one({"_id": oid})
    except NotFoundError:
        product = None
    except PyMongoError as e:
        logger.exception("Error loading product %s", product_id)
        raise PersistenceError("Failed to create order", details=str(e)) from e
    if not product:
        raise ValidationError("Product not found")
    return product


def submit_order(
    db: Database,
    payload: OrderRequest,
    now: Optional[datetime] = None,
    strategy: str = "counter",
) -> Tuple[str, Dict[str, Any]]:
    """Validate, number and store one order. Returns (order_number, order)."""
    data = validate_order(payload)
    product = load_product(db, data["product_id"])

    expected = round(effective_price(product) * data["quantity"], 2)
    if abs(round(data["total_amount"], 2) - expected) >= 0.01:
        raise ValidationError("Total amount does not match product price")

    local = _as_local(now)
    order_number = generate_order_number(db, local, strategy)
    order = Order(order_number=order_number, status=OrderStatus.PENDING, **data)
    doc = order.model_dump()
    doc["created_at"] = to_utc_naive(local)
    saved = db.create_document("orders", doc)
    logger.info("Order %s created for product %s", order_number, data["product_id"])
    return order_number, saved


def list_orders(
    db: Database,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    """Orders newest first, each with its product embedded under "product"."""
    filt: Dict[str, Any] = {}
    if status and status != "all":
        filt["status"] = status
    created: Dict[str, Any] = {}
    if start_date:
        created["$gte"] = to_utc_naive(start_date)
    if end_date:
        created["$lte"] = to_utc_naive(end_date)
    if created:
        filt["created_at"] = created

    orders = db.get_documents("orders", filt)
    product_ids = {o["product_id"] for o in orders}
    oids = []
    for pid in product_ids:
        try:
            oids.append(to_object_id(pid))
        except NotFoundError:
            continue
    try:
        products = {str(p["_id"]): oid_to_str(p) for p in db["products"].find({"_id": {"$in": oids}})}
    except PyMongoError as e:
        logger.exception("Error fetching products for orders")
        raise PersistenceError("Failed to fetch orders", details=str(e)) from e
    for o in orders:
        o["product"] = products.get(o["product_id"])
    return orders


def update_order_status(db: Database, order_id: str, status: Optional[str]) -> Dict[str, Any]:
    if not status:
        raise ValidationError("Status is required")
    if status not in ORDER_STATUSES:
        raise ValidationError("Invalid status")
    return db.update_document("orders", order_id, {"status": status})
