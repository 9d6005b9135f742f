from .conftest import run_email_worker


def test_register_promote_sell_order_deliver(make_user, login, email_queue, email_sender):
    make_user("admin@plantnet.shop", role="admin")
    admin = login("admin@plantnet.shop")

    seller = login("grower@example.com")
    assert seller.post("/users/grower@example.com", json={"name": "Grower"}).status_code == 201
    assert seller.patch("/users/grower@example.com").status_code == 200
    assert admin.patch("/user/role/grower@example.com", json={"role": "seller"}).status_code == 200
    assert seller.get("/users/role/grower@example.com").get_json() == {"role": "seller"}

    created = seller.post(
        "/plants",
        json={
            "name": "Peace Lily",
            "category": "Indoor",
            "description": "Blooms in shade",
            "price": 10.0,
            "quantity": 10,
            "image": "lily.jpg",
        },
    )
    assert created.status_code == 201
    plant_id = created.get_json()["insertedId"]

    customer = login("buyer@example.com")
    assert customer.post("/users/buyer@example.com", json={"name": "Buyer"}).status_code == 201
    placed = customer.post(
        "/order",
        json={
            "customer": {"email": "buyer@example.com", "name": "Buyer", "address": "1 Leaf St"},
            "seller": "grower@example.com",
            "plantId": plant_id,
            "quantity": 3,
            "price": 30.0,
        },
    )
    assert placed.status_code == 201
    order_id = placed.get_json()["insertedId"]

    adjusted = customer.patch(f"/plants/quantity/{plant_id}", json={"updatedQuantity": 3})
    assert adjusted.status_code == 200
    assert customer.get(f"/plants/{plant_id}").get_json()["plant"]["quantity"] == 7

    assert seller.patch(f"/order/{order_id}", json={"status": "Delivered"}).status_code == 200

    cancelled = customer.delete(f"/order/{order_id}")
    assert cancelled.status_code == 409

    [order] = customer.get("/customer-orders/buyer@example.com").get_json()["orders"]
    assert order["status"] == "Delivered"
    assert order["plantName"] == "Peace Lily"

    run_email_worker(email_queue)
    assert sorted(payload["to"][0] for payload in email_sender.sent) == [
        "buyer@example.com",
        "grower@example.com",
    ]
