"""
Database Schemas for MP Books & Stationery

Pydantic models for request bodies and for the documents stored in MongoDB.
Collections: users, products, carts, wishlists, orders, notifications,
messages, posters.
"""

import re
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

Category = Literal["Book", "Gift", "Stationery", "Sport"]
UnitType = Literal["Packet", "Piece"]
OrderStatus = Literal["Processing", "Ready for Pickup", "Delivered", "Cancelled"]
PaymentStatus = Literal["Pending", "Paid"]
NotificationType = Literal["order", "payment", "system", "message"]
Role = Literal["user", "admin"]

NAME_RE = re.compile(r"^[A-Za-z\s]+$")
PHONE_RE = re.compile(r"^\d{10}$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[^A-Za-z0-9]).{8,}$")


def _clean_name(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Name is required")
    if not NAME_RE.match(v):
        raise ValueError("Full Name must only contain letters and spaces")
    return v


def _clean_phone(v: str) -> str:
    digits = re.sub(r"\D", "", v)
    if not PHONE_RE.match(digits):
        raise ValueError("Enter a valid 10-digit phone number")
    return digits


def _check_password(v: str) -> str:
    if not PASSWORD_RE.match(v):
        raise ValueError(
            "Password must be at least 8 characters, include uppercase, lowercase, number, and a special character"
        )
    return v


PersonName = Annotated[str, Field(max_length=50), AfterValidator(_clean_name)]
Phone = Annotated[str, AfterValidator(_clean_phone)]
Password = Annotated[str, AfterValidator(_check_password)]


# ------------ Auth & User ------------
class RegisterBody(BaseModel):
    name: PersonName
    email: EmailStr
    phone: Phone
    password: Password


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class EmailBody(BaseModel):
    email: EmailStr


class VerifyEmailBody(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=1)


class ResetPasswordBody(BaseModel):
    resetCode: str = Field(..., min_length=1)
    password: Password


class UpdatePasswordBody(BaseModel):
    oldPassword: str = Field(..., min_length=1)
    password: Password


class ProfileUpdateBody(BaseModel):
    name: Optional[PersonName] = None
    email: Optional[EmailStr] = None
    phone: Optional[Phone] = None


class UserUpdateBody(BaseModel):
    name: Optional[PersonName] = None
    email: Optional[EmailStr] = None
    role: Optional[Role] = None


class User(BaseModel):
    """
    Users collection schema
    Collection name: "users"
    """
    name: str
    email: EmailStr
    phone: str
    password_hash: str
    salt: str
    role: Role = "user"
    isVerified: bool = False


# ------------ Products ------------
class ProductCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    category: Category
    images: List[str] = []
    unitType: Optional[UnitType] = None
    pricePerPacket: Optional[float] = None
    pricePerPiece: Optional[float] = None
    subCategory: Optional[str] = None
    academicCategory: Optional[str] = None
    class_: Optional[str] = Field(None, alias="class")
    marketPrice: Optional[float] = None
    priceToSell: Optional[float] = None

    @model_validator(mode="after")
    def _category_rules(self):
        if self.category == "Book":
            if not self.subCategory:
                raise ValueError("Sub-category is required for books")
            if self.subCategory == "Academic":
                if not self.academicCategory:
                    raise ValueError("Academic category is required for academic books")
                if not self.class_:
                    raise ValueError("Class is required for academic books")
            if not self.marketPrice or self.marketPrice <= 0:
                raise ValueError("Market price must be a positive number for books")
            if not self.priceToSell or self.priceToSell <= 0:
                raise ValueError("Price to sell must be a positive number for books")
            self.unitType = None
            self.pricePerPacket = None
            self.pricePerPiece = None
        else:
            if self.unitType is None:
                raise ValueError("Unit type must be either Packet or Piece for non-book products")
            if not self.pricePerPiece or self.pricePerPiece <= 0:
                raise ValueError("Price per piece must be a positive number for non-book products")
            if self.unitType == "Packet" and (not self.pricePerPacket or self.pricePerPacket <= 0):
                raise ValueError("Price per packet must be a positive number for packet products")
            self.subCategory = None
            self.academicCategory = None
            self.class_ = None
            self.marketPrice = None
            self.priceToSell = None
        return self


class ReviewBody(BaseModel):
    productId: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


# ------------ Cart & Wishlist ------------
class CartAddBody(BaseModel):
    productId: str
    quantity: int = Field(1, ge=1)
    unitType: Optional[UnitType] = None


class CartUpdateBody(BaseModel):
    quantity: Optional[int] = Field(None, ge=1)
    unitType: Optional[UnitType] = None


class WishlistBody(BaseModel):
    productId: str


# ------------ Orders ------------
class PaymentInfo(BaseModel):
    status: PaymentStatus


class OrderUpdateBody(BaseModel):
    orderStatus: Optional[OrderStatus] = None
    paymentInfo: Optional[PaymentInfo] = None


# ------------ Notifications & Messages ------------
class NotificationCreate(BaseModel):
    message: str = Field(..., min_length=1)
    type: NotificationType
    order: Optional[str] = None
    messageRef: Optional[str] = None


class NotificationUpdate(BaseModel):
    read: bool


class MessageCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    message: str = Field(..., min_length=1, max_length=1000)

    @field_validator("name", "message")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field cannot be blank")
        return v


class ReplyBody(BaseModel):
    replyMessage: str = Field(..., min_length=1, max_length=1000)
