"""
Product and category catalog.

Products embed their ratings; `average_rating` and `num_reviews` are derived
and recomputed every time the ratings change.
"""

import math
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

import config
from auth import AuthUser, admin_dependency, auth_dependency
from database import create_document, doc_to_json, get_db, get_document_or_404, get_documents, to_object_id, utcnow
from errors import NotFound, ValidationError
from logging_config import get_logger
from schemas import CategoryCreate, CategoryUpdate, ProductCreate, ProductUpdate, ReviewCreate

logger = get_logger(__name__)

product_router = APIRouter(prefix="/products", tags=["products"])
category_router = APIRouter(prefix="/categories", tags=["categories"])

_SORTABLE_FIELDS = {"created_at", "price", "name", "discount", "num_reviews", "average_rating", "stock"}


# -------------------- Helpers --------------------

def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def discounted_price(product: dict) -> float:
    price = float(product.get("price", 0))
    discount = float(product.get("discount", 0) or 0)
    if discount > 0:
        price = price - price * discount / 100
    return round(price, 2)


def compute_rating_summary(ratings: List[dict]) -> tuple[float, int]:
    if not ratings:
        return 0, 0
    average = round(sum(r["rating"] for r in ratings) / len(ratings), 1)
    return average, len(ratings)


def parse_sort(sort: Optional[str]) -> list:
    order_by = []
    for part in (sort or "-created_at").split(","):
        part = part.strip()
        if not part:
            continue
        direction = DESCENDING if part.startswith("-") else ASCENDING
        field = part.lstrip("-+")
        if field not in _SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by {field}")
        order_by.append((field, direction))
    order_by.append(("_id", DESCENDING))
    return order_by


def _category_names(db: Database, products: List[dict]) -> dict:
    ids = {p.get("category") for p in products if p.get("category")}
    object_ids = [to_object_id(i) for i in ids]
    return {str(c["_id"]): c["name"] for c in db["category"].find({"_id": {"$in": object_ids}})}


def _product_out(product: dict, category_names: dict) -> dict:
    out = doc_to_json(product)
    cid = product.get("category")
    out["category"] = {"id": cid, "name": category_names.get(cid)} if cid else None
    return out


def _products_out(db: Database, products: List[dict]) -> list:
    names = _category_names(db, products)
    return [_product_out(p, names) for p in products]


def _ensure_category(db: Database, category_id: str) -> dict:
    category = db["category"].find_one({"_id": to_object_id(category_id)})
    if not category:
        raise NotFound("Category not found")
    return category


# -------------------- Categories --------------------

def create_category(db: Database, payload: CategoryCreate) -> dict:
    if db["category"].find_one({"name": payload.name}):
        raise ValidationError("Category already exists")
    category_id = create_document(db, "category", {**payload.model_dump(), "slug": slugify(payload.name)})
    return db["category"].find_one({"_id": to_object_id(category_id)})


def update_category(db: Database, category_id: str, payload: CategoryUpdate) -> dict:
    category = get_document_or_404(db, "category", category_id, "Category")
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "name" in update:
        clash = db["category"].find_one({"name": update["name"], "_id": {"$ne": category["_id"]}})
        if clash:
            raise ValidationError("Category already exists")
        update["slug"] = slugify(update["name"])
    update["updated_at"] = utcnow()
    db["category"].update_one({"_id": category["_id"]}, {"$set": update})
    return db["category"].find_one({"_id": category["_id"]})


@category_router.get("")
def list_categories(db: Database = Depends(get_db)):
    data = [doc_to_json(c) for c in get_documents(db, "category", sort=[("name", ASCENDING)])]
    return {"success": True, "count": len(data), "data": data}


@category_router.get("/{category_id}")
def get_category(category_id: str, db: Database = Depends(get_db)):
    category = get_document_or_404(db, "category", category_id, "Category")
    return {"success": True, "data": doc_to_json(category)}


@category_router.post("", status_code=201)
def create_category_route(payload: CategoryCreate, user: AuthUser = Depends(admin_dependency), db: Database = Depends(get_db)):
    category = create_category(db, payload)
    logger.info("category_created", category_id=str(category["_id"]), admin_id=user.id)
    return {"success": True, "data": doc_to_json(category)}


@category_router.put("/{category_id}")
def update_category_route(
    category_id: str,
    payload: CategoryUpdate,
    user: AuthUser = Depends(admin_dependency),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": doc_to_json(update_category(db, category_id, payload))}


@category_router.delete("/{category_id}")
def delete_category(category_id: str, user: AuthUser = Depends(admin_dependency), db: Database = Depends(get_db)):
    category = get_document_or_404(db, "category", category_id, "Category")
    db["category"].delete_one({"_id": category["_id"]})
    logger.info("category_deleted", category_id=category_id, admin_id=user.id)
    return {"success": True, "data": {}}


# -------------------- Products --------------------

def create_product(db: Database, payload: ProductCreate) -> dict:
    _ensure_category(db, payload.category)
    now = utcnow()
    doc = {
        **payload.model_dump(),
        "slug": slugify(payload.name),
        "ratings": [],
        "average_rating": 0,
        "num_reviews": 0,
        "created_at": now,
        "updated_at": now,
    }
    doc["_id"] = db["product"].insert_one(doc).inserted_id
    return doc


def update_product(db: Database, product_id: str, payload: ProductUpdate) -> dict:
    product = get_document_or_404(db, "product", product_id, "Product")
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "category" in update:
        _ensure_category(db, update["category"])
    if "name" in update:
        update["slug"] = slugify(update["name"])
    update["updated_at"] = utcnow()
    db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    return db["product"].find_one({"_id": product["_id"]})


def list_products(
    db: Database,
    page: int = 1,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    featured: Optional[bool] = None,
    is_new: Optional[bool] = None,
    keyword: Optional[str] = None,
    sort: Optional[str] = None,
) -> dict:
    query = {}
    if category:
        query["category"] = category
    price = {}
    if min_price is not None:
        price["$gte"] = min_price
    if max_price is not None:
        price["$lte"] = max_price
    if price:
        query["price"] = price
    if featured is not None:
        query["featured"] = featured
    if is_new is not None:
        query["is_new"] = is_new
    if keyword:
        query["name"] = {"$regex": re.escape(keyword), "$options": "i"}

    page_size = config.PRODUCTS_PAGE_SIZE
    count = db["product"].count_documents(query)
    products = list(
        db["product"].find(query).sort(parse_sort(sort)).skip(page_size * (page - 1)).limit(page_size)
    )
    return {
        "count": count,
        "pages": math.ceil(count / page_size),
        "page": page,
        "products": products,
    }


def add_review(db: Database, product_id: str, user: AuthUser, payload: ReviewCreate) -> dict:
    product = get_document_or_404(db, "product", product_id, "Product")
    if any(r.get("user") == user.id for r in product.get("ratings", [])):
        raise ValidationError("Product already reviewed")

    rating = {"user": user.id, "rating": payload.rating, "review": payload.review.strip(), "date": utcnow()}
    result = db["product"].update_one(
        {"_id": product["_id"], "ratings.user": {"$ne": user.id}},
        {"$push": {"ratings": rating}},
    )
    if result.modified_count == 0:
        raise ValidationError("Product already reviewed")

    ratings = db["product"].find_one({"_id": product["_id"]}, {"ratings": 1}).get("ratings", [])
    average, count = compute_rating_summary(ratings)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"average_rating": average, "num_reviews": count}})
    logger.info("review_added", product_id=product_id, user_id=user.id, average_rating=average)
    return db["product"].find_one({"_id": product["_id"]})


def _collection(db: Database, query: dict, sort: list, limit: int) -> list:
    return list(db["product"].find(query).sort(sort + [("_id", DESCENDING)]).limit(limit))


@product_router.get("")
def list_products_route(
    page: int = Query(1, ge=1),
    category: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    featured: Optional[bool] = Query(None),
    is_new: Optional[bool] = Query(None),
    keyword: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    db: Database = Depends(get_db),
):
    result = list_products(db, page, category, min_price, max_price, featured, is_new, keyword, sort)
    data = _products_out(db, result["products"])
    return {"success": True, "count": result["count"], "pages": result["pages"], "page": page, "data": data}


@product_router.get("/featured")
def featured_products(limit: int = Query(config.COLLECTION_LIMIT, ge=1), db: Database = Depends(get_db)):
    data = _products_out(db, _collection(db, {"featured": True}, [("created_at", DESCENDING)], limit))
    return {"success": True, "count": len(data), "data": data}


@product_router.get("/new")
def new_arrivals(limit: int = Query(config.COLLECTION_LIMIT, ge=1), db: Database = Depends(get_db)):
    data = _products_out(db, _collection(db, {"is_new": True}, [("created_at", DESCENDING)], limit))
    return {"success": True, "count": len(data), "data": data}


@product_router.get("/sale")
def products_on_sale(limit: int = Query(config.COLLECTION_LIMIT, ge=1), db: Database = Depends(get_db)):
    data = _products_out(db, _collection(db, {"discount": {"$gt": 0}}, [("discount", DESCENDING)], limit))
    return {"success": True, "count": len(data), "data": data}


@product_router.get("/bestsellers")
def bestsellers(limit: int = Query(config.COLLECTION_LIMIT, ge=1), db: Database = Depends(get_db)):
    data = _products_out(db, _collection(db, {}, [("num_reviews", DESCENDING)], limit))
    return {"success": True, "count": len(data), "data": data}


@product_router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = get_document_or_404(db, "product", product_id, "Product")
    out = _products_out(db, [product])[0]
    reviewer_ids = [to_object_id(r["user"]) for r in product.get("ratings", [])]
    names = {str(u["_id"]): u.get("name", "") for u in db["user"].find({"_id": {"$in": reviewer_ids}})}
    for rating in out.get("ratings", []):
        rating["user"] = {"id": rating["user"], "name": names.get(rating["user"])}
    return {"success": True, "data": out}


@product_router.post("", status_code=201)
def create_product_route(payload: ProductCreate, user: AuthUser = Depends(admin_dependency), db: Database = Depends(get_db)):
    product = create_product(db, payload)
    logger.info("product_created", product_id=str(product["_id"]), admin_id=user.id)
    return {"success": True, "data": _products_out(db, [product])[0]}


@product_router.put("/{product_id}")
def update_product_route(
    product_id: str,
    payload: ProductUpdate,
    user: AuthUser = Depends(admin_dependency),
    db: Database = Depends(get_db),
):
    product = update_product(db, product_id, payload)
    return {"success": True, "data": _products_out(db, [product])[0]}


@product_router.delete("/{product_id}")
def delete_product(product_id: str, user: AuthUser = Depends(admin_dependency), db: Database = Depends(get_db)):
    product = get_document_or_404(db, "product", product_id, "Product")
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("product_deleted", product_id=product_id, admin_id=user.id)
    return {"success": True, "data": {}}


@product_router.post("/{product_id}/reviews", status_code=201)
def create_review(
    product_id: str,
    payload: ReviewCreate,
    user: AuthUser = Depends(auth_dependency),
    db: Database = Depends(get_db),
):
    product = add_review(db, product_id, user, payload)
    return {
        "success": True,
        "data": {"average_rating": product["average_rating"], "num_reviews": product["num_reviews"]},
    }
