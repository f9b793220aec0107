from fastapi import APIRouter, Depends
from pymongo import DESCENDING
from pymongo.database import Database

import config
from auth import AuthUser, admin_dependency, public_user
from catalog import _products_out
from database import doc_to_json, get_db, get_document_or_404, utcnow
from errors import Forbidden
from logging_config import get_logger
from orders import list_all_orders
from schemas import FlagUpdate, RoleUpdate

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(admin_dependency)])

RECENT_ORDERS = 5
TOP_PRODUCTS = 5


def is_default_admin(user: dict) -> bool:
    return bool(config.ADMIN_EMAIL) and user.get("email") == config.ADMIN_EMAIL


def dashboard_stats(db: Database) -> dict:
    revenue = sum(o.get("total_price", 0) for o in db["order"].find({}, {"total_price": 1}))
    top_products = list(db["product"].find().sort([("num_reviews", DESCENDING), ("_id", DESCENDING)]).limit(TOP_PRODUCTS))
    return {
        "user_count": db["user"].count_documents({}),
        "product_count": db["product"].count_documents({}),
        "category_count": db["category"].count_documents({}),
        "order_count": db["order"].count_documents({}),
        "revenue": round(revenue, 2),
        "pending_order_count": db["order"].count_documents({"status": "pending"}),
        "delivered_order_count": db["order"].count_documents({"status": "delivered"}),
        "low_stock_products": db["product"].count_documents({"stock": {"$lt": config.LOW_STOCK_THRESHOLD}}),
        "recent_orders": [doc_to_json(o) for o in list_all_orders(db, limit=RECENT_ORDERS)],
        "top_selling_products": _products_out(db, top_products),
    }


def _set_product_flag(db: Database, product_id: str, flag: str, value: bool) -> dict:
    product = get_document_or_404(db, "product", product_id, "Product")
    db["product"].update_one({"_id": product["_id"]}, {"$set": {flag: value, "updated_at": utcnow()}})
    logger.info("product_flag_set", product_id=product_id, flag=flag, value=value)
    return db["product"].find_one({"_id": product["_id"]})


# -------------------- Routes --------------------

@router.get("/dashboard")
def dashboard(db: Database = Depends(get_db)):
    return {"success": True, "data": dashboard_stats(db)}


@router.get("/users")
def list_users(db: Database = Depends(get_db)):
    users = [public_user(u) for u in db["user"].find().sort("created_at", DESCENDING)]
    return {"success": True, "count": len(users), "data": users}


@router.put("/users/{user_id}/role")
def update_user_role(
    user_id: str,
    payload: RoleUpdate,
    admin: AuthUser = Depends(admin_dependency),
    db: Database = Depends(get_db),
):
    user = get_document_or_404(db, "user", user_id, "User")
    if is_default_admin(user):
        raise Forbidden("Cannot change default admin role")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": payload.role, "updated_at": utcnow()}})
    logger.info("user_role_updated", user_id=user_id, role=payload.role, admin_id=admin.id)
    return {"success": True, "data": public_user(db["user"].find_one({"_id": user["_id"]}))}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, admin: AuthUser = Depends(admin_dependency), db: Database = Depends(get_db)):
    user = get_document_or_404(db, "user", user_id, "User")
    if is_default_admin(user):
        raise Forbidden("Cannot delete default admin user")
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("user_deleted", user_id=user_id, admin_id=admin.id)
    return {"success": True, "data": {}}


@router.put("/products/{product_id}/featured")
def set_product_featured(product_id: str, payload: FlagUpdate, db: Database = Depends(get_db)):
    product = _set_product_flag(db, product_id, "featured", payload.value)
    return {"success": True, "data": _products_out(db, [product])[0]}


@router.put("/products/{product_id}/new")
def set_product_new(product_id: str, payload: FlagUpdate, db: Database = Depends(get_db)):
    product = _set_product_flag(db, product_id, "is_new", payload.value)
    return {"success": True, "data": _products_out(db, [product])[0]}
