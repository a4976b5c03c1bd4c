import io
from datetime import datetime

import mongomock
import pytest
from bson import ObjectId

from storefront import create_app
from storefront.accounts import hash_password
from storefront.config import Settings
from storefront.images import ImageStore, ImageStoreError, UploadedImage

TEST_JWT_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


class FakeImageStore(ImageStore):
    """In-memory image host that can be told to fail on the n-th upload."""

    def __init__(self):
        self.fail_on_upload = None
        self.fail_on_destroy = False
        self.upload_calls = 0
        self.stored = {}
        self.destroyed = []

    def upload(self, image_file, folder):
        self.upload_calls += 1
        if self.fail_on_upload == self.upload_calls:
            raise ImageStoreError("simulated image host outage")
        public_id = f"{folder}/fake-{self.upload_calls}"
        self.stored[public_id] = image_file.filename
        return UploadedImage(public_id=public_id, url=f"https://images.example.com/{public_id}.png")

    def destroy(self, public_id):
        # True fails every destroy; a public id fails only that image.
        if self.fail_on_destroy is True or self.fail_on_destroy == public_id:
            raise ImageStoreError("simulated destroy failure")
        self.destroyed.append(public_id)
        self.stored.pop(public_id, None)


class FakeMailer:
    def __init__(self):
        self.should_succeed = True
        self.sent = []

    def send_password_reset_code(self, recipient_email, code, expiration_minutes):
        if not self.should_succeed:
            return False, "simulated delivery failure"
        self.sent.append({"to": recipient_email, "code": code, "minutes": expiration_minutes})
        return True, None


@pytest.fixture
def settings():
    return Settings(cookie_expire_days=7, jwt_secret_key=TEST_JWT_SECRET)


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def image_store():
    return FakeImageStore()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def app(settings, db, image_store, mailer):
    app = create_app(settings, db=db, image_store=image_store, mailer=mailer)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def create_user(db, name="Jane Shopper", email="jane@example.com", password="password123", role="user"):
    result = db.users.insert_one(
        {
            "name": name,
            "email": email,
            "password": hash_password(password),
            "role": role,
            "createdAt": datetime.utcnow(),
        }
    )
    return db.users.find_one({"_id": result.inserted_id})


def login(client, email, password="password123"):
    response = client.post("/api/v1/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return response


@pytest.fixture
def user(db):
    return create_user(db)


@pytest.fixture
def admin(db):
    return create_user(db, name="Store Admin", email="admin@example.com", role="admin")


@pytest.fixture
def user_client(app, user):
    client = app.test_client()
    login(client, user["email"])
    return client


@pytest.fixture
def admin_client(app, admin):
    client = app.test_client()
    login(client, admin["email"])
    return client


def insert_product(db, **overrides):
    document = {
        "name": "Plain Tee",
        "description": "A plain tee.",
        "price": 15.0,
        "category": "Apparel",
        "stock": 10,
        "images": [{"publicId": "products/seed", "url": "https://images.example.com/seed.png"}],
        "user": ObjectId(),
        "reviews": [],
        "ratings": 0,
        "numOfReviews": 0,
        "revision": 0,
        "createdAt": datetime.utcnow(),
    }
    document.update(overrides)
    result = db.products.insert_one(document)
    return db.products.find_one({"_id": result.inserted_id})


def image_upload(name="photo.png"):
    return (io.BytesIO(b"\x89PNG fake image bytes"), name)
