from conftest import make_token
from fitstream.core.errors import UpstreamError
from fitstream.models import Profile


def auth_headers(user_id="u1", email="u1@example.com"):
    return {"Authorization": f"Bearer {make_token(user_id, email)}"}


def test_missing_price_id_is_rejected(client):
    res = client.post("/checkout", json={}, headers=auth_headers())

    assert res.status_code == 400
    assert res.json() == {"error": "Price ID is required"}


def test_blank_price_id_is_rejected_before_auth(client):
    res = client.post("/checkout", json={"priceId": "  "})

    assert res.status_code == 400


def test_non_json_body_is_rejected(client):
    res = client.post(
        "/checkout",
        content=b"not json",
        headers={**auth_headers(), "Content-Type": "application/json"},
    )

    assert res.status_code == 400
    assert res.json() == {"error": "Price ID is required"}


def test_non_string_price_id_is_rejected(client, stripe_gateway):
    res = client.post("/checkout", json={"priceId": 5}, headers=auth_headers())

    assert res.status_code == 400
    assert res.json() == {"error": "Price ID is required"}
    assert stripe_gateway.sessions == []


def test_unauthenticated_checkout_is_rejected(client, stripe_gateway):
    res = client.post("/checkout", json={"priceId": "price_basic"})

    assert res.status_code == 401
    assert res.json() == {"error": "User not authenticated"}
    assert stripe_gateway.sessions == []


def test_forged_token_is_rejected(client):
    token = make_token(secret="not-the-project-secret-but-long-enough")

    res = client.post("/checkout", json={"priceId": "price_basic"}, headers={"Authorization": f"Bearer {token}"})

    assert res.status_code == 401


def test_first_checkout_creates_and_stores_customer(client, stripe_gateway, db):
    res = client.post("/checkout", json={"priceId": "price_basic"}, headers=auth_headers())

    assert res.status_code == 200
    body = res.json()
    assert body == {"sessionId": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    assert stripe_gateway.customers == [{"id": "cus_1", "email": "u1@example.com", "user_id": "u1"}]
    [session] = stripe_gateway.sessions
    assert session["customer"] == "cus_1"
    assert session["price_id"] == "price_basic"
    assert session["user_id"] == "u1"
    assert session["mode"] == "subscription"
    assert session["success_url"] == "http://localhost:3000/payment/success?session_id={CHECKOUT_SESSION_ID}"
    assert session["cancel_url"] == "http://localhost:3000/"

    db.expire_all()
    profile = db.get(Profile, "u1")
    assert profile.stripe_customer_id == "cus_1"
    assert profile.email == "u1@example.com"


def test_existing_customer_is_reused(client, stripe_gateway, db):
    db.add(Profile(id="u1", email="u1@example.com", stripe_customer_id="cus_existing"))
    db.commit()

    res = client.post("/checkout", json={"priceId": "price_standard"}, headers=auth_headers())

    assert res.status_code == 200
    assert stripe_gateway.customers == []
    assert stripe_gateway.sessions[0]["customer"] == "cus_existing"


def test_repeat_checkout_does_not_create_second_customer(client, stripe_gateway):
    client.post("/checkout", json={"priceId": "price_basic"}, headers=auth_headers())
    client.post("/checkout", json={"priceId": "price_premium"}, headers=auth_headers())

    assert len(stripe_gateway.customers) == 1
    assert [s["customer"] for s in stripe_gateway.sessions] == ["cus_1", "cus_1"]


def test_session_cookie_is_accepted(client):
    client.cookies.set("sb-access-token", make_token())

    res = client.post("/checkout", json={"priceId": "price_basic"})

    assert res.status_code == 200


def test_stripe_failure_surfaces_message_only(client, stripe_gateway):
    stripe_gateway.fail_with = UpstreamError("Could not create Stripe customer")

    res = client.post("/checkout", json={"priceId": "price_basic"}, headers=auth_headers())

    assert res.status_code == 500
    assert res.json() == {"error": "Could not create Stripe customer"}
