"""
Order aggregate.

An order is created from a cart snapshot plus a shipping address and starts
as `pending` / unpaid. Payment is recorded through `mark_paid`, which is
idempotent: `is_paid` only ever flips from False to True, and whichever writer
(browser callback or processor webhook) gets there first keeps its
`payment_result`.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from auth import AuthUser, admin_dependency, auth_dependency
from database import doc_to_json, get_db, to_object_id, utcnow
from errors import Forbidden, NotFound, ValidationError
from logging_config import get_logger
from schemas import OrderCreate, OrderStatus, OrderStatusUpdate

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

ORDER_STATUSES = [s.value for s in OrderStatus]
REQUIRED_SHIPPING_FIELDS = ("address", "city", "postal_code", "country")
_NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]
_CENT = 0.01


def _money(value) -> float:
    return round(float(value or 0), 2)


def _validate_items(line_items: List[dict]) -> List[dict]:
    if not line_items:
        raise ValidationError("No order items")
    items = []
    for item in line_items:
        if not item.get("product") or not item.get("name"):
            raise ValidationError("Each order item needs a product and a name")
        quantity = int(item.get("quantity") or 0)
        if quantity < 1:
            raise ValidationError("Order item quantity must be at least 1")
        price = float(item.get("price") or 0)
        if price < 0:
            raise ValidationError("Order item price cannot be negative")
        items.append(
            {
                "product": str(item["product"]),
                "name": item["name"],
                "quantity": quantity,
                "price": price,
                "image": item.get("image"),
            }
        )
    return items


def _validate_shipping(shipping_address: dict) -> dict:
    shipping_address = shipping_address or {}
    for name in REQUIRED_SHIPPING_FIELDS:
        if not str(shipping_address.get(name) or "").strip():
            raise ValidationError(f"Please provide shipping {name.replace('_', ' ')}")
    return {k: v for k, v in shipping_address.items() if v is not None}


def _price_order(items: List[dict], costs: dict) -> dict:
    subtotal = _money(costs.get("subtotal"))
    tax_price = _money(costs.get("tax_price"))
    shipping_price = _money(costs.get("shipping_price"))
    if min(subtotal, tax_price, shipping_price) < 0:
        raise ValidationError("Order amounts cannot be negative")

    items_total = _money(sum(i["price"] * i["quantity"] for i in items))
    if abs(items_total - subtotal) > _CENT:
        raise ValidationError(f"Subtotal {subtotal:.2f} does not match order items total {items_total:.2f}")

    total_price = _money(subtotal + tax_price + shipping_price)
    claimed = costs.get("total_price")
    if claimed is not None and abs(_money(claimed) - total_price) > _CENT:
        raise ValidationError(f"Total {float(claimed):.2f} does not equal subtotal + tax + shipping ({total_price:.2f})")

    return {
        "subtotal": subtotal,
        "tax_price": tax_price,
        "shipping_price": shipping_price,
        "total_price": total_price,
    }


def _reserve_stock(db: Database, order_id: str, items: List[dict]) -> None:
    # Best effort only: nothing ties this to the order insert.
    for item in items:
        try:
            product_oid = to_object_id(item["product"])
        except ValidationError:
            continue
        result = db["product"].update_one(
            {"_id": product_oid, "stock": {"$gte": item["quantity"]}},
            {"$inc": {"stock": -item["quantity"]}},
        )
        if result.modified_count == 0:
            logger.warning(
                "stock_not_decremented",
                order_id=order_id,
                product_id=item["product"],
                quantity=item["quantity"],
            )


def can_access(order: dict, user: AuthUser) -> bool:
    return order.get("user") == user.id or user.is_admin


def load_order(db: Database, order_id: str) -> dict:
    order = db["order"].find_one({"_id": to_object_id(order_id)})
    if not order:
        raise NotFound("Order not found")
    return order


# -------------------- Operations --------------------

def create_order(
    db: Database,
    user_id: str,
    line_items: List[dict],
    shipping_address: dict,
    costs: dict,
    payment_method: str = "credit_card",
) -> dict:
    items = _validate_items(line_items)
    address = _validate_shipping(shipping_address)
    pricing = _price_order(items, costs)

    now = utcnow()
    order_doc = {
        "user": user_id,
        "order_items": items,
        "shipping_address": address,
        **pricing,
        "payment_method": payment_method,
        "is_paid": False,
        "paid_at": None,
        "payment_result": None,
        "status": OrderStatus.PENDING.value,
        "tracking_number": None,
        "created_at": now,
        "updated_at": now,
    }
    order_doc["_id"] = db["order"].insert_one(order_doc).inserted_id
    order_id = str(order_doc["_id"])
    logger.info("order_created", order_id=order_id, user_id=user_id, total_price=pricing["total_price"])

    _reserve_stock(db, order_id, items)
    return order_doc


def get_order(db: Database, order_id: str, user: AuthUser) -> dict:
    order = load_order(db, order_id)
    if not can_access(order, user):
        raise Forbidden("Not authorized to access this order")
    return order


def list_orders_for_user(db: Database, user_id: str) -> List[dict]:
    return list(db["order"].find({"user": user_id}).sort(_NEWEST_FIRST))


def list_all_orders(db: Database, limit: Optional[int] = None) -> List[dict]:
    cursor = db["order"].find().sort(_NEWEST_FIRST)
    if limit:
        cursor = cursor.limit(limit)
    orders = list(cursor)
    owner_ids = []
    for order in orders:
        try:
            owner_ids.append(to_object_id(order.get("user")))
        except ValidationError:
            continue
    owners = {
        str(u["_id"]): {"id": str(u["_id"]), "name": u.get("name", ""), "email": u["email"]}
        for u in db["user"].find({"_id": {"$in": owner_ids}})
    }
    for order in orders:
        order["user"] = owners.get(order.get("user"), {"id": order.get("user"), "name": None, "email": None})
    return orders


def update_status(db: Database, order_id: str, status, tracking_number: Optional[str] = None) -> dict:
    status = status.value if isinstance(status, OrderStatus) else status
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status '{status}'; expected one of {', '.join(ORDER_STATUSES)}")
    update = {"status": status, "updated_at": utcnow()}
    if tracking_number is not None:
        update["tracking_number"] = tracking_number
    order = db["order"].find_one_and_update(
        {"_id": to_object_id(order_id)},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        raise NotFound("Order not found")
    logger.info("order_status_updated", order_id=order_id, status=status, tracking_number=tracking_number)
    return order


def mark_paid(db: Database, order_id: str, payment_result: dict) -> dict:
    """Record payment once. Later calls leave the stored payment untouched."""
    try:
        oid = to_object_id(order_id)
    except ValidationError:
        raise NotFound("Order not found")
    now = utcnow()
    order = db["order"].find_one_and_update(
        {"_id": oid, "is_paid": False},
        {"$set": {"is_paid": True, "paid_at": now, "payment_result": payment_result, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        current = db["order"].find_one({"_id": oid})
        if not current:
            raise NotFound("Order not found")
        logger.info("order_already_paid", order_id=order_id, payment_id=payment_result.get("id"))
        return current

    if order.get("status") == OrderStatus.PENDING.value:
        db["order"].update_one(
            {"_id": oid, "status": OrderStatus.PENDING.value},
            {"$set": {"status": OrderStatus.PROCESSING.value}},
        )
        order = db["order"].find_one({"_id": oid})
    logger.info("order_marked_paid", order_id=order_id, payment_id=payment_result.get("id"), status=order["status"])
    return order


# -------------------- Routes --------------------

@router.post("", status_code=201)
def create_order_route(payload: OrderCreate, user: AuthUser = Depends(auth_dependency), db: Database = Depends(get_db)):
    order = create_order(
        db,
        user.id,
        [i.model_dump() for i in payload.order_items],
        payload.shipping_address.model_dump(),
        {
            "subtotal": payload.subtotal,
            "tax_price": payload.tax_price,
            "shipping_price": payload.shipping_price,
            "total_price": payload.total_price,
        },
        payment_method=payload.payment_method,
    )
    return {"success": True, "data": doc_to_json(order)}


@router.get("/myorders")
def my_orders(user: AuthUser = Depends(auth_dependency), db: Database = Depends(get_db)):
    orders = [doc_to_json(o) for o in list_orders_for_user(db, user.id)]
    return {"success": True, "count": len(orders), "data": orders}


@router.get("")
def all_orders(user: AuthUser = Depends(admin_dependency), db: Database = Depends(get_db)):
    orders = [doc_to_json(o) for o in list_all_orders(db)]
    return {"success": True, "count": len(orders), "data": orders}


@router.get("/{order_id}")
def get_order_route(order_id: str, user: AuthUser = Depends(auth_dependency), db: Database = Depends(get_db)):
    return {"success": True, "data": doc_to_json(get_order(db, order_id, user))}


@router.put("/{order_id}/status")
def update_status_route(
    order_id: str,
    payload: OrderStatusUpdate,
    user: AuthUser = Depends(admin_dependency),
    db: Database = Depends(get_db),
):
    order = update_status(db, order_id, payload.status, payload.tracking_number)
    return {"success": True, "data": doc_to_json(order)}
