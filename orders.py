"""
Orders

Placing an order snapshots the user's cart: every line keeps the price it was
bought at, so later catalog price changes never touch an existing order.
After placement only the status and payment fields move:

    Processing       -> Ready for Pickup | Delivered | Cancelled
    Ready for Pickup -> Delivered | Cancelled
    Delivered, Cancelled are final.
"""

import secrets
from typing import Any, Dict, List, Optional

import structlog
from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from cart import CartService, is_book
from database import NEWEST_FIRST, Repositories, utcnow
from inbox import NotificationService
from mailer import Mailer, order_confirmation_email, pickup_ready_email

logger = structlog.get_logger(__name__)

ORDER_CODE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
ORDER_CODE_LENGTH = 4
ORDER_CODE_ATTEMPTS = 20

STATUS_TRANSITIONS = {
    "Processing": {"Ready for Pickup", "Delivered", "Cancelled"},
    "Ready for Pickup": {"Delivered", "Cancelled"},
    "Delivered": set(),
    "Cancelled": set(),
}


def generate_order_code() -> str:
    return "".join(secrets.choice(ORDER_CODE_ALPHABET) for _ in range(ORDER_CODE_LENGTH))


def purchase_price(product: Dict[str, Any], unit_type: Optional[str]) -> float:
    if is_book(product):
        price = product.get("priceToSell")
    elif unit_type == "Packet":
        price = product.get("pricePerPacket")
        if not price:
            raise HTTPException(status_code=400, detail=f"{product['name']} is no longer sold by the packet")
    else:
        price = product.get("pricePerPiece")
    if not price:
        raise HTTPException(status_code=400, detail=f"{product['name']} has no price set")
    return price


def order_total(items: List[Dict[str, Any]]) -> float:
    return sum(item["purchasePrice"] * item["quantity"] for item in items)


def order_summary(items: List[Dict[str, Any]]) -> str:
    return ", ".join(f"{i['name']} ({i['quantity']} {i.get('unitType') or 'piece'})" for i in items)


def is_complete(order: Dict[str, Any]) -> bool:
    return order.get("orderStatus") == "Delivered" and order.get("paymentInfo", {}).get("status") == "Paid"


class OrderService:
    def __init__(
        self,
        repos: Repositories,
        cart: CartService,
        notifications: NotificationService,
        mailer: Mailer,
    ):
        self.orders = repos.orders
        self.products = repos.products
        self.users = repos.users
        self.carts = repos.carts
        self.cart = cart
        self.notifications = notifications
        self.mailer = mailer

    # ----------------------- Placement -----------------------
    def _order_item(self, line: Dict[str, Any], product: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if product is None:
            raise HTTPException(status_code=404, detail="A product in your cart is no longer available")
        images = product.get("images") or []
        item = {
            "name": product["name"],
            "quantity": line["quantity"],
            "image": images[0] if images else None,
            "product": product["_id"],
            "category": product["category"],
            "purchasePrice": purchase_price(product, line.get("unitType")),
        }
        if is_book(product):
            for field in ("marketPrice", "subCategory", "academicCategory", "class"):
                if product.get(field) is not None:
                    item[field] = product[field]
        else:
            item["unitType"] = line.get("unitType") or "Piece"
        return item

    def _insert_with_code(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        for _ in range(ORDER_CODE_ATTEMPTS):
            code = generate_order_code()
            if self.orders.find_one(orderID=code):
                continue
            try:
                return self.orders.insert({**doc, "orderID": code})
            except DuplicateKeyError:
                logger.info("order_code_collision", code=code)
        raise HTTPException(status_code=500, detail="Could not allocate an order number, please try again")

    def place_order(self, user: Dict[str, Any]) -> Dict[str, Any]:
        cart = self.carts.find_one(user=user["_id"])
        if not cart or not cart.get("products"):
            raise HTTPException(status_code=400, detail="Your cart is empty")

        products = self.products.get_many(line["product"] for line in cart["products"])
        items = [self._order_item(line, products.get(line["product"])) for line in cart["products"]]
        total = order_total(items)

        order = self._insert_with_code({
            "user": user["_id"],
            "orderItems": items,
            "shippingInfo": {"phoneNo": user.get("phone")},
            "totalAmount": total,
            "paymentInfo": {"status": "Pending"},
            "orderStatus": "Processing",
            "isInHistory": False,
        })
        logger.info("order_placed", order_id=str(order["_id"]), code=order["orderID"], total=total)

        self.notifications.notify(f"New order #{order['orderID']} has been placed", "order", order=order["_id"])
        self.mailer.send_quietly(
            user["email"],
            "Order Confirmation - MP Books & Stationery",
            order_confirmation_email(user.get("name", ""), order["orderID"], order_summary(items), total),
        )

        self.cart.delete_cart(user["_id"])
        return order

    # ----------------------- Queries -----------------------
    def _get_or_404(self, order_id: str) -> Dict[str, Any]:
        order = self.orders.get(order_id)
        if not order:
            raise HTTPException(status_code=404, detail="No Order found with this ID")
        return order

    def _with_user(self, order: Dict[str, Any], fields=("name", "email", "phone")) -> Dict[str, Any]:
        owner = self.users.get(order["user"])
        if owner:
            order = {**order, "user": {"_id": owner["_id"], **{f: owner.get(f) for f in fields}}}
        return order

    def my_orders(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self.orders.find({"user": user["_id"]}, sort=NEWEST_FIRST)

    def get_order(self, id_or_code: str, user: Dict[str, Any]) -> Dict[str, Any]:
        if len(id_or_code) == ORDER_CODE_LENGTH:
            order = self.orders.find_one(orderID=id_or_code.upper())
        else:
            order = self.orders.get(id_or_code)
        if not order:
            raise HTTPException(status_code=404, detail="No Order found with this ID")
        if order["user"] != user["_id"] and user.get("role") != "admin":
            raise HTTPException(status_code=403, detail="You are not authorized to view this order")
        return self._with_user(order)

    def all_orders(self, order_status: Optional[str] = None, payment_status: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if order_status:
            query["orderStatus"] = order_status
        if payment_status:
            query["paymentInfo.status"] = payment_status
        orders = self.orders.find(query, sort=NEWEST_FIRST)
        owners = self.users.get_many({o["user"] for o in orders})
        result = []
        for o in orders:
            owner = owners.get(o["user"])
            if owner:
                o = {**o, "user": {"_id": owner["_id"], "name": owner.get("name"), "email": owner.get("email")}}
            result.append(o)
        return result

    # ----------------------- Lifecycle -----------------------
    def update_order(
        self,
        order_id: str,
        order_status: Optional[str] = None,
        payment_status: Optional[str] = None,
    ) -> Dict[str, Any]:
        order = self._get_or_404(order_id)
        prev_status = order["orderStatus"]
        prev_payment = order.get("paymentInfo", {}).get("status", "Pending")
        was_complete = is_complete(order)

        fields: Dict[str, Any] = {}
        if order_status and order_status != prev_status:
            if order_status not in STATUS_TRANSITIONS[prev_status]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Cannot change order status from {prev_status} to {order_status}",
                )
            fields["orderStatus"] = order_status
            if order_status == "Delivered":
                fields["deliveredAt"] = utcnow()
        if payment_status and payment_status != prev_payment:
            if prev_payment == "Paid":
                raise HTTPException(status_code=400, detail="Payment has already been recorded as Paid")
            fields["paymentInfo.status"] = payment_status

        if fields:
            order = self.orders.update(order["_id"], fields)
            logger.info("order_updated", order_id=order_id, status=order["orderStatus"],
                        payment=order["paymentInfo"]["status"])

        if is_complete(order) and not was_complete:
            for product_id in {item["product"] for item in order["orderItems"]}:
                self.products.increment(product_id, "salesCount", 1)

        if prev_status == "Processing" and order["orderStatus"] == "Ready for Pickup":
            owner = self.users.get(order["user"])
            if owner and owner.get("email"):
                self.mailer.send_quietly(
                    owner["email"],
                    "Your order is ready for pickup! - MP Books & Stationery",
                    pickup_ready_email(owner.get("name", ""), order["orderID"], order["totalAmount"]),
                )

        return order

    def cancel_order(self, order_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        order = self._get_or_404(order_id)
        if order["user"] != user["_id"]:
            raise HTTPException(status_code=403, detail="You are not authorized to cancel this order")
        if order["orderStatus"] == "Delivered":
            raise HTTPException(status_code=400, detail="You cannot cancel an order that has already been delivered")
        if order["orderStatus"] == "Cancelled":
            raise HTTPException(status_code=400, detail="This order is already cancelled")
        order = self.orders.update(order["_id"], {"orderStatus": "Cancelled"})
        logger.info("order_cancelled", order_id=order_id, user_id=str(user["_id"]))
        return order

    def delete_order(self, order_id: str) -> None:
        order = self._get_or_404(order_id)
        self.orders.delete(order["_id"])
        logger.info("order_deleted", order_id=order_id)
