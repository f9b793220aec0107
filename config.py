"""
Runtime configuration for the storefront API.

Everything is read from environment variables so the same code runs locally,
in CI (fake payment gateway, mongomock) and in production.
"""

import os

# -------------------- Database --------------------

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# -------------------- Payment processor --------------------

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")
STORE_NAME = os.getenv("STORE_NAME", "Storefront")

# -------------------- Auth --------------------

TOKEN_TTL_DAYS = int(os.getenv("TOKEN_TTL_DAYS", "7"))
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Administrator")

# -------------------- Checkout --------------------

TAX_RATE = 0.10
SHIPPING_FLAT = 15.0
LOW_STOCK_THRESHOLD = 5
PRODUCTS_PAGE_SIZE = 10
COLLECTION_LIMIT = 8

# -------------------- Server --------------------

ENVIRONMENT = (os.getenv("ENVIRONMENT") or os.getenv("ENV") or "development").lower()
PORT = int(os.getenv("PORT", "8000"))
