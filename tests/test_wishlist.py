from bson import ObjectId

WISHLIST = "/api/v1/wishlist"


def test_wishlist_add_is_idempotent(client, user, auth, make_product):
    pen = make_product()
    headers = auth(user)
    for _ in range(2):
        assert client.post(WISHLIST, json={"productId": str(pen["_id"])}, headers=headers).status_code == 200

    products = client.get(WISHLIST, headers=headers).json()["products"]
    assert [p["id"] for p in products] == [str(pen["_id"])]


def test_wishlist_unknown_product(client, user, auth):
    res = client.post(WISHLIST, json={"productId": str(ObjectId())}, headers=auth(user))
    assert res.status_code == 404


def test_wishlist_remove_and_deleted_products(client, user, auth, make_product, db):
    pen, book = make_product(), make_product(category="Book")
    headers = auth(user)
    for p in (pen, book):
        client.post(WISHLIST, json={"productId": str(p["_id"])}, headers=headers)

    db.products.delete_one({"_id": book["_id"]})
    products = client.get(WISHLIST, headers=headers).json()["products"]
    assert [p["name"] for p in products] == ["Classmate Pen"]

    assert client.delete(f"{WISHLIST}/{pen['_id']}", headers=headers).status_code == 200
    assert client.get(WISHLIST, headers=headers).json()["products"] == []


def test_missing_wishlist_is_empty(client, user, auth):
    headers = auth(user)
    assert client.get(WISHLIST, headers=headers).json()["products"] == []
    assert client.delete(f"{WISHLIST}/{ObjectId()}", headers=headers).status_code == 200
