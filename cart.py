"""
Client-side cart.

The cart lives in whatever `StorageAdapter` it is given; only
`{product, quantity, name}` is persisted. Prices, images and stock are
rehydrated from the live catalog every time the cart is loaded.
"""

import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

import config
from errors import ApiError, NotFound, ValidationError
from logging_config import get_logger

logger = get_logger(__name__)


# -------------------- Storage --------------------

class StorageAdapter(ABC):
    """Key/value persistence for client state (cart, auth token)."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class InMemoryStorage(StorageAdapter):
    def __init__(self, initial: Optional[dict] = None) -> None:
        self._data = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage(StorageAdapter):
    """Stores every key in a single JSON file, rewritten on each change."""

    def __init__(self, path: str) -> None:
        self.path = path

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, encoding="utf-8") as f:
            try:
                return json.load(f)
            except ValueError:
                logger.warning("storage_file_corrupt", path=self.path)
                return {}

    def _write(self, data: dict) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


# -------------------- Cart --------------------

def current_price(product: dict) -> float:
    price = float(product.get("price", 0))
    discount = float(product.get("discount") or 0)
    if discount > 0:
        price = price - price * discount / 100
    return round(price, 2)


@dataclass
class CartItem:
    product: str
    name: str
    price: float
    quantity: int
    stock: int
    image: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    def to_stored(self) -> dict:
        return {"product": self.product, "quantity": self.quantity, "name": self.name}

    def to_order_item(self) -> dict:
        return {
            "product": self.product,
            "name": self.name,
            "quantity": self.quantity,
            "price": self.price,
            "image": self.image,
        }

    @classmethod
    def from_product(cls, product: dict, quantity: int) -> "CartItem":
        images = product.get("images") or []
        return cls(
            product=product["id"],
            name=product["name"],
            price=current_price(product),
            quantity=quantity,
            stock=int(product.get("stock", 0)),
            image=images[0] if images else None,
        )


class CartStore:
    """Cart aggregate. `products` is anything with `get_product(product_id) -> dict`."""

    STORAGE_KEY = "cart"

    def __init__(self, storage: StorageAdapter, products) -> None:
        self.storage = storage
        self.products = products
        self.items: List[CartItem] = []

    def _persist(self) -> None:
        self.storage.set(self.STORAGE_KEY, [i.to_stored() for i in self.items])

    def _find(self, product_id: str) -> Optional[CartItem]:
        return next((i for i in self.items if i.product == product_id), None)

    def load(self) -> List[CartItem]:
        """Rebuild the cart from storage against live product data; vanished products are dropped."""
        items = []
        for stored in self.storage.get(self.STORAGE_KEY) or []:
            try:
                product = self.products.get_product(stored["product"])
            except ApiError as exc:
                logger.info("cart_item_dropped", product_id=stored.get("product"), reason=exc.message)
                continue
            item = CartItem.from_product(product, int(stored.get("quantity", 1)))
            if item.stock < 1:
                logger.info("cart_item_dropped", product_id=item.product, reason="out of stock")
                continue
            item.quantity = max(1, min(item.quantity, item.stock))
            items.append(item)
        self.items = items
        self._persist()
        return self.items

    def add_item(self, product_id: str, quantity: int = 1) -> CartItem:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        product = self.products.get_product(product_id)
        stock = int(product.get("stock", 0))
        existing = self._find(product_id)
        wanted = quantity + (existing.quantity if existing else 0)
        if wanted > stock:
            raise ValidationError(f"Sorry, only {stock} items available in stock.")

        if existing:
            existing.quantity = wanted
            existing.price = current_price(product)
            existing.stock = stock
            item = existing
        else:
            item = CartItem.from_product(product, quantity)
            self.items.append(item)
        self._persist()
        return item

    def update_quantity(self, product_id: str, quantity: int) -> CartItem:
        item = self._find(product_id)
        if item is None:
            raise NotFound("Item not found in cart")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        if quantity > item.stock:
            raise ValidationError(f"Sorry, only {item.stock} items available in stock.")
        item.quantity = quantity
        self._persist()
        return item

    def remove_item(self, product_id: str) -> None:
        self.items = [i for i in self.items if i.product != product_id]
        self._persist()

    def clear(self) -> None:
        self.items = []
        self.storage.remove(self.STORAGE_KEY)

    @property
    def total(self) -> float:
        return round(sum(i.line_total for i in self.items), 2)

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    def checkout_costs(self) -> dict:
        subtotal = self.total
        tax_price = round(subtotal * config.TAX_RATE, 2)
        shipping_price = config.SHIPPING_FLAT if self.items else 0.0
        return {
            "subtotal": subtotal,
            "tax_price": tax_price,
            "shipping_price": shipping_price,
            "total_price": round(subtotal + tax_price + shipping_price, 2),
        }

    def checkout(self, api, shipping_address: dict, payment_method: str = "credit_card") -> dict:
        """Submit the cart as an order and empty it once the server accepts it."""
        if not self.items:
            raise ValidationError("Your cart is empty")
        payload = {
            "order_items": [i.to_order_item() for i in self.items],
            "shipping_address": shipping_address,
            "payment_method": payment_method,
            **self.checkout_costs(),
        }
        order = api.create_order(payload)
        logger.info("cart_checked_out", order_id=order["id"], items=len(self.items))
        self.clear()
        return order
