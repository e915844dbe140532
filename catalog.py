import json
import re
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi import HTTPException, UploadFile

from database import NEWEST_FIRST, Repositories
from schemas import ProductCreate
from uploads import PRODUCT_IMAGE_COUNT, PRODUCT_IMAGE_LIMIT, ImageStore

logger = structlog.get_logger(__name__)

FILTER_FIELDS = ("category", "subCategory", "academicCategory", "class")
# Fields owned by the store, never taken from an admin payload.
MANAGED_FIELDS = ("_id", "user", "salesCount", "reviews", "numOfReviews", "ratings", "createdAt", "updatedAt")


def _parse_keep_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise HTTPException(status_code=400, detail="imagesToKeep must be a JSON array of image paths")
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise HTTPException(status_code=400, detail="imagesToKeep must be a JSON array of image paths")
    return value


def average_rating(reviews: List[Dict[str, Any]]) -> float:
    if not reviews:
        return 0
    return sum(r["rating"] for r in reviews) / len(reviews)


class Catalog:
    def __init__(self, repos: Repositories, images: ImageStore):
        self.products = repos.products
        self.images = images

    # ----------------------- Queries -----------------------
    def get_product(self, product_id: str) -> Dict[str, Any]:
        product = self.products.get(product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        return product

    def list_products(self, filters: Dict[str, Optional[str]], keyword: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {k: v for k, v in filters.items() if k in FILTER_FIELDS and v}
        if keyword:
            query["name"] = {"$regex": re.escape(keyword), "$options": "i"}
        return self.products.find(query)

    def best_sellers(self, limit: int = 10) -> List[Dict[str, Any]]:
        return self.products.find({"salesCount": {"$gt": 0}}, sort=[("salesCount", -1)], limit=limit)

    def recent(self, limit: int = 8) -> List[Dict[str, Any]]:
        return self.products.find({}, sort=NEWEST_FIRST, limit=limit)

    # ----------------------- Admin -----------------------
    def create_product(self, data: Dict[str, Any], files: List[UploadFile], admin: Dict[str, Any]) -> Dict[str, Any]:
        payload = {k: v for k, v in data.items() if k not in MANAGED_FIELDS}
        product = ProductCreate.model_validate({**payload, "images": []})

        if files:
            images = self.images.save_many(files, "products", "images", PRODUCT_IMAGE_LIMIT, PRODUCT_IMAGE_COUNT)
        else:
            images = _parse_keep_list(data.get("images"))
            for path in images:
                if not self.images.contains(path):
                    raise HTTPException(status_code=400, detail=f"Invalid image path: {path}")

        doc = product.model_dump(by_alias=True, exclude_none=True)
        doc.update(
            images=images,
            user=admin["_id"],
            salesCount=0,
            reviews=[],
            numOfReviews=0,
            ratings=0,
        )
        doc = self.products.insert(doc)
        logger.info("product_created", product_id=str(doc["_id"]), category=doc["category"])
        return doc

    def update_product(self, product_id: str, data: Dict[str, Any], files: List[UploadFile]) -> Dict[str, Any]:
        existing = self.get_product(product_id)
        changes = {k: v for k, v in data.items() if k not in MANAGED_FIELDS and k not in ("images", "imagesToKeep")}

        merged = {k: v for k, v in existing.items() if k not in MANAGED_FIELDS}
        merged.update(changes)
        # marketPrice is write-once
        if existing.get("marketPrice") is not None:
            merged["marketPrice"] = existing["marketPrice"]
        product = ProductCreate.model_validate({**merged, "images": []})

        images = list(existing.get("images") or [])
        if "imagesToKeep" in data:
            keep = _parse_keep_list(data["imagesToKeep"])
            for path in images:
                if path not in keep:
                    self.images.delete(path)
            images = [p for p in images if p in keep]
        if files:
            images += self.images.save_many(files, "products", "images", PRODUCT_IMAGE_LIMIT, PRODUCT_IMAGE_COUNT)

        doc = product.model_dump(by_alias=True, exclude_none=True)
        doc["images"] = images
        for field in MANAGED_FIELDS:
            if field in existing:
                doc[field] = existing[field]
        doc = self.products.save(doc)
        logger.info("product_updated", product_id=product_id)
        return doc

    def delete_product(self, product_id: str) -> None:
        product = self.get_product(product_id)
        for path in product.get("images") or []:
            self.images.delete(path)
        self.products.delete(product["_id"])
        logger.info("product_deleted", product_id=product_id)

    # ----------------------- Reviews -----------------------
    def upsert_review(self, product_id: str, user: Dict[str, Any], rating: int, comment: str) -> Dict[str, Any]:
        product = self.get_product(product_id)
        reviews = product.get("reviews") or []

        for review in reviews:
            if review["user"] == user["_id"]:
                review["rating"] = rating
                review["comment"] = comment
                break
        else:
            reviews.append({
                "_id": ObjectId(),
                "user": user["_id"],
                "name": user.get("name"),
                "rating": rating,
                "comment": comment,
            })

        return self.products.update(product["_id"], {
            "reviews": reviews,
            "numOfReviews": len(reviews),
            "ratings": average_rating(reviews),
        })

    def get_reviews(self, product_id: str) -> List[Dict[str, Any]]:
        return self.get_product(product_id).get("reviews") or []

    def delete_review(self, product_id: str, review_id: str) -> Dict[str, Any]:
        product = self.get_product(product_id)
        reviews = [r for r in product.get("reviews") or [] if str(r["_id"]) != review_id]
        return self.products.update(product["_id"], {
            "reviews": reviews,
            "numOfReviews": len(reviews),
            "ratings": average_rating(reviews),
        })
