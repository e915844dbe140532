"""
Admin inbox: notifications raised by storefront activity and messages sent
through the contact form.
"""

import re
from datetime import datetime, time
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi import HTTPException
from pymongo.errors import PyMongoError

from database import NEWEST_FIRST, Repositories, to_object_id, utcnow
from mailer import Mailer, message_reply_email

logger = structlog.get_logger(__name__)

MESSAGES_PER_PAGE = 10
PREVIEW_LENGTH = 100


class NotificationService:
    def __init__(self, repos: Repositories):
        self.notifications = repos.notifications
        self.orders = repos.orders
        self.messages = repos.messages

    def create(
        self,
        message: str,
        type: str,
        order: Optional[Any] = None,
        message_ref: Optional[Any] = None,
    ) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"message": message, "type": type, "read": False}
        if order is not None:
            doc["order"] = to_object_id(order)
        if message_ref is not None:
            doc["messageRef"] = to_object_id(message_ref)
        return self.notifications.insert(doc)

    def notify(self, message: str, type: str, order: Optional[ObjectId] = None, message_ref: Optional[ObjectId] = None) -> None:
        """Record a notification as a side effect; storage errors are logged only."""
        try:
            self.create(message, type, order=order, message_ref=message_ref)
        except PyMongoError as e:
            logger.warning("notification_failed", type=type, error=str(e))

    def list(self) -> List[Dict[str, Any]]:
        notes = self.notifications.find({}, sort=NEWEST_FIRST)
        orders = self.orders.get_many({n["order"] for n in notes if n.get("order")})
        messages = self.messages.get_many({n["messageRef"] for n in notes if n.get("messageRef")})
        result = []
        for n in notes:
            n = dict(n)
            order = orders.get(n.get("order"))
            if order:
                n["order"] = {
                    "_id": order["_id"],
                    "orderID": order.get("orderID"),
                    "orderItems": order.get("orderItems"),
                    "totalAmount": order.get("totalAmount"),
                    "orderStatus": order.get("orderStatus"),
                }
            msg = messages.get(n.get("messageRef"))
            if msg:
                n["messageRef"] = {k: msg.get(k) for k in ("_id", "name", "email", "message")}
            result.append(n)
        return result

    def set_read(self, notification_id: str, read: bool) -> Dict[str, Any]:
        note = self.notifications.update(notification_id, {"read": read})
        if not note:
            raise HTTPException(status_code=404, detail="Notification not found")
        return note

    def mark_all_read(self) -> int:
        return self.notifications.update_many({"read": False}, {"read": True})


class MessageService:
    def __init__(self, repos: Repositories, notifications: NotificationService, mailer: Mailer):
        self.messages = repos.messages
        self.notifications = notifications
        self.mailer = mailer

    def _get_or_404(self, message_id: str) -> Dict[str, Any]:
        msg = self.messages.get(message_id)
        if not msg:
            raise HTTPException(status_code=404, detail="Message not found")
        return msg

    def create(self, name: str, email: str, message: str) -> Dict[str, Any]:
        doc = self.messages.insert({
            "name": name,
            "email": email.lower(),
            "message": message,
            "read": False,
            "replied": False,
        })
        preview = message[:PREVIEW_LENGTH] + ("..." if len(message) > PREVIEW_LENGTH else "")
        self.notifications.notify(f"New message from {name}: {preview}", "message", message_ref=doc["_id"])
        return doc

    def list(
        self,
        keyword: Optional[str] = None,
        read: Optional[bool] = None,
        replied: Optional[bool] = None,
        page: int = 1,
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if keyword:
            pattern = {"$regex": re.escape(keyword), "$options": "i"}
            query["$or"] = [{"name": pattern}, {"email": pattern}, {"message": pattern}]
        if read is not None:
            query["read"] = read
        if replied is not None:
            query["replied"] = replied

        page = max(page, 1)
        return {
            "messagesCount": self.messages.count(),
            "resPerPage": MESSAGES_PER_PAGE,
            "filteredMessagesCount": self.messages.count(query),
            "messages": self.messages.find(
                query,
                sort=NEWEST_FIRST,
                skip=(page - 1) * MESSAGES_PER_PAGE,
                limit=MESSAGES_PER_PAGE,
            ),
        }

    def stats(self) -> Dict[str, int]:
        start_of_day = datetime.combine(utcnow().date(), time.min)
        return {
            "total": self.messages.count(),
            "unread": self.messages.count({"read": False}),
            "replied": self.messages.count({"replied": True}),
            "today": self.messages.count({"createdAt": {"$gte": start_of_day}}),
        }

    def open(self, message_id: str) -> Dict[str, Any]:
        msg = self._get_or_404(message_id)
        if not msg.get("read"):
            msg = self.messages.update(msg["_id"], {"read": True})
        return msg

    def set_read(self, message_id: str, read: bool) -> Dict[str, Any]:
        msg = self._get_or_404(message_id)
        return self.messages.update(msg["_id"], {"read": read})

    def reply(self, message_id: str, reply: str, admin: Dict[str, Any]) -> Dict[str, Any]:
        msg = self._get_or_404(message_id)
        msg = self.messages.update(msg["_id"], {
            "replyMessage": reply,
            "replied": True,
            "repliedAt": utcnow(),
            "repliedBy": admin["_id"],
        })
        self.mailer.send_quietly(
            msg["email"],
            "Reply to your message - MP Books & Stationery",
            message_reply_email(msg["name"], msg["message"], reply),
        )
        return msg

    def delete(self, message_id: str) -> None:
        msg = self._get_or_404(message_id)
        self.messages.delete(msg["_id"])
