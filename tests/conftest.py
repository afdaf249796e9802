import mongomock
import pytest
from fastapi.testclient import TestClient

import notifications
import payments
from config import Settings, get_settings
from database import Database, get_db, utcnow
from main import app
from routes_public import contact_limiter
from schemas import Contact, Kitchen, KitchenAddress, License, Menuitem, Order, OrderItem, StatusChange, User
from security import TOKEN_COOKIE, create_token, hash_password

PASSWORD = "Passw0rd1"


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        resend_api_key="re_test_key",
        admin_email="admin@tifincart.test",
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret="rzp_test_secret",
        delivery_fee=40.0,
        tax_rate=0.05,
    )


@pytest.fixture
def db():
    return Database(client=mongomock.MongoClient(tz_aware=True), name="tifincart_test")


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def fake_send_email(settings, to, subject, html_body):
        sent.append({"to": to, "subject": subject, "html": html_body})
        return {"id": f"email_{len(sent)}"}

    monkeypatch.setattr(notifications, "send_email", fake_send_email)
    return sent


@pytest.fixture
def gateway_orders(monkeypatch):
    created = []

    class FakeOrders:
        def __init__(self, auth):
            self.auth = auth

        def create(self, data=None, **kwargs):
            created.append({"auth": self.auth, "data": data})
            return {"id": f"order_test{len(created)}", "amount": data["amount"], "currency": data["currency"]}

    class FakeClient:
        def __init__(self, auth=None, **options):
            self.order = FakeOrders(auth)

    monkeypatch.setattr(payments.razorpay, "Client", FakeClient)
    return created


@pytest.fixture
def client(db, settings, sent_emails):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    contact_limiter.reset()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="customer", name="Test User", email=None, password=PASSWORD):
        counter["n"] += 1
        email = email or f"{role}{counter['n']}@example.com"
        user_id = db.create_document("user", User(
            name=name, email=email, password_hash=hash_password(password), role=role,
        ))
        return db.get_document_by_id("user", user_id)

    return _make


@pytest.fixture
def login(client, settings):
    """Put a valid token cookie for `user` on the shared test client."""
    def _login(user):
        client.cookies.set(TOKEN_COOKIE, create_token(user, settings))
        return client

    return _login


@pytest.fixture
def make_kitchen(db):
    def _make(owner, name="Amma's Kitchen", status="approved", is_open=True, city="pune"):
        kitchen_id = db.create_document("kitchen", Kitchen(
            owner_id=owner["_id"],
            name=name,
            description="Home style thalis",
            cuisine="indian",
            address=KitchenAddress(street="12 MG Road", city=city, state="Maharashtra", zip_code="411001"),
            contact=Contact(phone="9876543210"),
            license=License(fssai_number="11223344556677"),
            status=status,
            is_active=status == "approved",
            is_currently_open=is_open,
        ))
        return db.get_document_by_id("kitchen", kitchen_id)

    return _make


@pytest.fixture
def make_menu_item(db):
    def _make(kitchen, name="Veg Thali", price=100.0, is_available=True, category="Lunch"):
        item_id = db.create_document("menuitem", Menuitem(
            kitchen_id=kitchen["_id"], name=name, description=f"{name} made fresh", price=price,
            category=category, is_available=is_available,
        ))
        return db.get_document_by_id("menuitem", item_id)

    return _make


@pytest.fixture
def make_order(db):
    def _make(customer, kitchen, items, status="pending", payment_method="cash"):
        subtotal = sum(i["price"] * i["quantity"] for i in items)
        order_id = db.create_document("order", Order(
            customer_id=customer["_id"],
            seller_id=kitchen["owner_id"],
            kitchen_id=kitchen["_id"],
            items=[OrderItem(menu_item_id=i["_id"], name=i["name"], price=i["price"], quantity=i["quantity"])
                   for i in items],
            delivery_address="221B Baker Street",
            payment_method=payment_method,
            status=status,
            subtotal=subtotal,
            delivery_fee=40.0,
            tax=round(subtotal * 0.05, 2),
            total_amount=round(subtotal * 1.05 + 40, 2),
            status_history=[StatusChange(status=status, timestamp=utcnow())],
        ))
        return db.get_document_by_id("order", order_id)

    return _make
