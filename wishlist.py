from typing import Any, Dict, List

from fastapi import HTTPException

from database import Repositories, to_object_id


class WishlistService:
    def __init__(self, repos: Repositories):
        self.wishlists = repos.wishlists
        self.products = repos.products

    def get(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        wishlist = self.wishlists.find_one(user=user["_id"])
        if not wishlist:
            return []
        products = self.products.get_many(wishlist["products"])
        # products deleted from the catalog simply drop out
        return [products[pid] for pid in wishlist["products"] if pid in products]

    def add(self, user: Dict[str, Any], product_id: str) -> None:
        product = self.products.get(product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        wishlist = self.wishlists.find_one(user=user["_id"])
        if not wishlist:
            self.wishlists.insert({"user": user["_id"], "products": [product["_id"]]})
        elif product["_id"] not in wishlist["products"]:
            wishlist["products"].append(product["_id"])
            self.wishlists.save(wishlist)

    def remove(self, user: Dict[str, Any], product_id: str) -> None:
        wishlist = self.wishlists.find_one(user=user["_id"])
        if wishlist:
            pid = to_object_id(product_id)
            wishlist["products"] = [p for p in wishlist["products"] if p != pid]
            self.wishlists.save(wishlist)
