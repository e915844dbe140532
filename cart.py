"""
Shopping cart

A cart holds one line per product for books, and one line per
(product, unitType) pair for everything else. Adding a line that already
exists increases its quantity; switching a line to a unit type that another
line of the same product already has folds the two lines together.
"""

from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi import HTTPException

from database import Repositories, to_object_id

logger = structlog.get_logger(__name__)


def is_book(product: Dict[str, Any]) -> bool:
    return product.get("category") == "Book"


class CartService:
    def __init__(self, repos: Repositories):
        self.carts = repos.carts
        self.products = repos.products

    def _product(self, product_id) -> Dict[str, Any]:
        product = self.products.get(product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        return product

    def _cart_or_404(self, user: Dict[str, Any]) -> Dict[str, Any]:
        cart = self.carts.find_one(user=user["_id"])
        if not cart:
            raise HTTPException(status_code=404, detail="Cart not found")
        return cart

    @staticmethod
    def _line_index(cart: Dict[str, Any], item_id: str) -> int:
        for i, line in enumerate(cart["products"]):
            if str(line["_id"]) == item_id:
                return i
        raise HTTPException(status_code=404, detail="Cart item not found")

    def get_cart(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Cart lines with their product documents filled in."""
        cart = self.carts.find_one(user=user["_id"])
        if not cart:
            return []
        products = self.products.get_many(line["product"] for line in cart["products"])
        return [{**line, "product": products.get(line["product"])} for line in cart["products"]]

    def add_item(self, user: Dict[str, Any], product_id: str, quantity: int, unit_type: Optional[str] = None) -> Dict[str, Any]:
        product = self._product(product_id)

        if is_book(product):
            if unit_type:
                raise HTTPException(status_code=400, detail="Unit type cannot be specified for books")
        else:
            unit_type = unit_type or product.get("unitType")
            if unit_type == "Packet" and not product.get("pricePerPacket"):
                raise HTTPException(status_code=400, detail="This product is not sold by the packet")

        cart = self.carts.find_one(user=user["_id"])
        if not cart:
            cart = self.carts.insert({"user": user["_id"], "products": []})

        for line in cart["products"]:
            if line["product"] == product["_id"] and (is_book(product) or line.get("unitType") == unit_type):
                line["quantity"] += quantity
                break
        else:
            line = {"_id": ObjectId(), "product": product["_id"], "quantity": quantity}
            if not is_book(product):
                line["unitType"] = unit_type
            cart["products"].append(line)

        logger.debug("cart_item_added", user_id=str(user["_id"]), product_id=product_id, unit_type=unit_type)
        return self.carts.save(cart)

    def update_item(
        self,
        user: Dict[str, Any],
        item_id: str,
        quantity: Optional[int] = None,
        unit_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        cart = self._cart_or_404(user)
        idx = self._line_index(cart, item_id)
        line = cart["products"][idx]

        if unit_type is not None:
            product = self._product(line["product"])
            if is_book(product):
                raise HTTPException(status_code=400, detail="Cannot change unit type for a book")
            if unit_type == "Packet" and not product.get("pricePerPacket"):
                raise HTTPException(status_code=400, detail="This product is not sold by the packet")

        if quantity is not None:
            line["quantity"] = quantity

        if unit_type is not None and unit_type != line.get("unitType"):
            target = next(
                (
                    other
                    for other in cart["products"]
                    if other is not line and other["product"] == line["product"] and other.get("unitType") == unit_type
                ),
                None,
            )
            if target is not None:
                target["quantity"] += line["quantity"]
                del cart["products"][idx]
            else:
                line["unitType"] = unit_type

        return self.carts.save(cart)

    def remove_item(self, user: Dict[str, Any], item_id: str) -> Dict[str, Any]:
        cart = self._cart_or_404(user)
        idx = self._line_index(cart, item_id)
        del cart["products"][idx]
        return self.carts.save(cart)

    def clear(self, user: Dict[str, Any]) -> None:
        cart = self.carts.find_one(user=user["_id"])
        if cart:
            cart["products"] = []
            self.carts.save(cart)

    def delete_cart(self, user_id: ObjectId) -> None:
        self.carts.delete_many({"user": to_object_id(user_id)})
