import os
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

import admin
import auth
import catalog
import config
import database
import orders
import payments
from errors import register_exception_handlers
from logging_config import add_context, clear_context, configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if database.db is not None:
        auth.bootstrap_admin(database.db)
    else:
        logger.warning("database_not_configured")
    logger.info("startup", environment=config.ENVIRONMENT)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def request_context(request: Request, call_next):
    clear_context()
    add_context(request_id=request.headers.get("x-request-id") or uuid4().hex, method=request.method, path=request.url.path)
    try:
        return await call_next(request)
    finally:
        clear_context()


app.include_router(auth.router)
app.include_router(catalog.category_router)
app.include_router(catalog.product_router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(admin.router)


# -------------------- Health & Test --------------------

@app.get("/")
def read_root():
    return {"message": f"{config.STORE_NAME} API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "payment_gateway": "stripe" if config.STRIPE_SECRET_KEY else "fake",
        "collections": [],
    }
    db = database.db
    if db is None:
        return response
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = db.name
    response["connection_status"] = "Connected"
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        logger.warning("database_check_failed", error=str(e))
        response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
