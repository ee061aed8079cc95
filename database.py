"""
In-memory storage for the Farm Marketplace.

The store keeps four insertion-ordered collections (users, products, orders,
reviews) for the lifetime of the process. Records are plain dicts with the
same camelCase keys the API returns. Nothing is persisted across restarts.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Request

Record = Dict[str, Any]

RECENT_LIMIT = 5
PRODUCT_FIELDS = ("name", "description", "price", "category", "stock", "minStock", "image")


class DuplicateEmailError(Exception):
    """Raised when a user with the same email is already stored."""


class DuplicateIdError(Exception):
    """Raised when a seeded record reuses an id already present in its collection."""


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class MarketStore:
    def __init__(self):
        self.users: List[Record] = []
        self.products: List[Record] = []
        self.orders: List[Record] = []
        self.reviews: List[Record] = []
        self._last_ids = {name: 0 for name in ("users", "products", "orders", "reviews")}
        self._lock = threading.RLock()

    def _next_id(self, collection: str) -> int:
        self._last_ids[collection] += 1
        return self._last_ids[collection]

    def _seed(self, collection: str, record: Record) -> Record:
        """Append a copy of record, assigning the next id unless it brings its own."""
        records = getattr(self, collection)
        doc = {**record}
        if "id" not in doc:
            doc["id"] = self._next_id(collection)
        elif any(r.get("id") == doc["id"] for r in records):
            raise DuplicateIdError(f"{collection} id {doc['id']!r} already exists")
        elif isinstance(doc["id"], int):
            # Explicit ids move the counter forward so later ids stay unique.
            self._last_ids[collection] = max(self._last_ids[collection], doc["id"])
        records.append(doc)
        return doc

    @staticmethod
    def _index_of(records: List[Record], record_id: Any, farmer_id: Any) -> int:
        for i, r in enumerate(records):
            if r.get("id") == record_id and r.get("farmerId") == farmer_id:
                return i
        return -1

    # Users

    def find_user_by_email(self, email: str) -> Optional[Record]:
        return next((u for u in self.users if u["email"] == email), None)

    def find_user_by_id(self, user_id: Any) -> Optional[Record]:
        return next((u for u in self.users if u["id"] == user_id), None)

    def create_user(self, name: str, email: str, password_hash: str, user_type: str, additional_info: Any) -> Record:
        with self._lock:
            if self.find_user_by_email(email) is not None:
                raise DuplicateEmailError(email)
            user = {
                "id": self._next_id("users"),
                "name": name,
                "email": email,
                "password": password_hash,
                "userType": user_type,
                "additionalInfo": additional_info,
                "createdAt": now_iso(),
            }
            self.users.append(user)
            return user

    # Products

    def products_for(self, farmer_id: Any) -> List[Record]:
        return [p for p in self.products if p.get("farmerId") == farmer_id]

    def add_product(self, farmer_id: Any, fields: Record) -> Record:
        with self._lock:
            product = {"id": self._next_id("products"), "farmerId": farmer_id}
            product.update({k: fields.get(k) for k in PRODUCT_FIELDS})
            product["createdAt"] = now_iso()
            self.products.append(product)
            return product

    def update_product(self, product_id: Any, farmer_id: Any, fields: Record) -> Optional[Record]:
        """Replace every mutable field of a farmer's product; None if the farmer owns no such product."""
        with self._lock:
            idx = self._index_of(self.products, product_id, farmer_id)
            if idx == -1:
                return None
            updated = {**self.products[idx], **{k: fields.get(k) for k in PRODUCT_FIELDS}, "updatedAt": now_iso()}
            self.products[idx] = updated
            return updated

    def delete_product(self, product_id: Any, farmer_id: Any) -> bool:
        with self._lock:
            idx = self._index_of(self.products, product_id, farmer_id)
            if idx == -1:
                return False
            del self.products[idx]
            return True

    # Orders

    def orders_for(self, farmer_id: Any) -> List[Record]:
        return [o for o in self.orders if o.get("farmerId") == farmer_id]

    def add_order(self, order: Record) -> Record:
        """Seed an order. The API exposes no creation route for orders."""
        with self._lock:
            return self._seed("orders", order)

    def update_order_status(self, order_id: Any, farmer_id: Any, status: str) -> Optional[Record]:
        with self._lock:
            idx = self._index_of(self.orders, order_id, farmer_id)
            if idx == -1:
                return None
            order = self.orders[idx]
            order["status"] = status
            order["updatedAt"] = now_iso()
            return order

    # Reviews

    def reviews_for(self, farmer_id: Any) -> List[Record]:
        return [r for r in self.reviews if r.get("farmerId") == farmer_id]

    def add_review(self, review: Record) -> Record:
        """Seed a review. Reviews are read-only through the API."""
        with self._lock:
            return self._seed("reviews", review)

    # Dashboard

    def dashboard_for(self, farmer_id: Any) -> Record:
        products = self.products_for(farmer_id)
        orders = self.orders_for(farmer_id)
        reviews = self.reviews_for(farmer_id)

        total_revenue = sum(o.get("total") or 0 for o in orders)
        avg_rating = sum(r.get("rating") or 0 for r in reviews) / len(reviews) if reviews else 0

        return {
            "totalProducts": len(products),
            "totalOrders": len(orders),
            "totalRevenue": total_revenue,
            "averageRating": avg_rating,
            "recentOrders": orders[-RECENT_LIMIT:],
            "recentReviews": reviews[-RECENT_LIMIT:],
        }


def get_store(request: Request) -> MarketStore:
    return request.app.state.store
