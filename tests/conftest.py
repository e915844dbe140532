import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from config import Settings
from database import utcnow
from mailer import MailError, Mailer
from main import create_app
from security import create_token, hash_password

PASSWORD = "Secret#123"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class FakeMailer(Mailer):
    """Records outgoing mail instead of talking SMTP."""

    def __init__(self, settings):
        super().__init__(settings)
        self.sent = []
        self.fail = False

    def send(self, to, subject, html):
        if self.fail:
            raise MailError("smtp unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})

    def subjects(self, to=None):
        return [m["subject"] for m in self.sent if to is None or m["to"] == to]


@pytest.fixture
def settings(tmp_path):
    return Settings(upload_dir=str(tmp_path / "uploads"), log_level="WARNING")


@pytest.fixture
def db():
    return mongomock.MongoClient()["mp_stationery_test"]


@pytest.fixture
def mailer(settings):
    return FakeMailer(settings)


@pytest.fixture
def app(settings, db, mailer):
    return create_app(settings=settings, db=db, mailer=mailer)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="user", name="Test User", email=None, phone=None, password=PASSWORD, verified=True):
        counter["n"] += 1
        n = counter["n"]
        pw_hash, salt = hash_password(password)
        now = utcnow()
        doc = {
            "name": name,
            "email": email or f"user{n}@example.com",
            "phone": phone or f"98000000{n:02d}",
            "password_hash": pw_hash,
            "salt": salt,
            "role": role,
            "isVerified": verified,
            "createdAt": now,
            "updatedAt": now,
        }
        doc["_id"] = db.users.insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture
def auth(settings):
    def _headers(user):
        return {"Authorization": f"Bearer {create_token(str(user['_id']), settings)}"}

    return _headers


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", name="Shop Admin")


@pytest.fixture
def make_product(db):
    def _make(**fields):
        now = utcnow()
        doc = {
            "name": "Classmate Pen",
            "description": "Blue ball pen",
            "category": "Stationery",
            "unitType": "Piece",
            "pricePerPiece": 20,
            "images": [],
            "salesCount": 0,
            "reviews": [],
            "numOfReviews": 0,
            "ratings": 0,
            "user": ObjectId(),
            "createdAt": now,
            "updatedAt": now,
        }
        if fields.get("category") == "Book":
            for key in ("unitType", "pricePerPiece"):
                doc.pop(key)
            doc.update(subCategory="Novel", marketPrice=350, priceToSell=300)
        doc.update(fields)
        doc["_id"] = db.products.insert_one(doc).inserted_id
        return doc

    return _make
