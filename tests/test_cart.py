from bson import ObjectId

CART = "/api/v1/cart"


def cart_lines(client, headers):
    res = client.get(CART, headers=headers)
    assert res.status_code == 200
    return res.json()["products"]


def test_empty_cart_is_an_empty_list(client, user, auth):
    assert cart_lines(client, auth(user)) == []


def test_adding_same_product_and_unit_twice_merges(client, user, auth, make_product):
    pen = make_product()
    headers = auth(user)
    for qty in (2, 3):
        res = client.post(CART, json={"productId": str(pen["_id"]), "quantity": qty, "unitType": "Piece"}, headers=headers)
        assert res.status_code == 200

    lines = cart_lines(client, headers)
    assert len(lines) == 1
    assert lines[0]["quantity"] == 5
    assert lines[0]["unitType"] == "Piece"
    assert lines[0]["product"]["name"] == "Classmate Pen"


def test_non_book_without_unit_type_uses_product_unit(client, user, auth, make_product):
    pen = make_product(unitType="Packet", pricePerPacket=180)
    headers = auth(user)
    client.post(CART, json={"productId": str(pen["_id"])}, headers=headers)
    client.post(CART, json={"productId": str(pen["_id"]), "unitType": "Packet"}, headers=headers)

    lines = cart_lines(client, headers)
    assert [(l["unitType"], l["quantity"]) for l in lines] == [("Packet", 2)]


def test_book_rejects_unit_type(client, user, auth, make_product):
    book = make_product(category="Book", name="Muna Madan")
    res = client.post(CART, json={"productId": str(book["_id"]), "unitType": "Piece"}, headers=auth(user))
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Unit type cannot be specified for books"}


def test_book_lines_have_no_unit_type(client, user, auth, make_product):
    book = make_product(category="Book")
    headers = auth(user)
    client.post(CART, json={"productId": str(book["_id"]), "quantity": 1}, headers=headers)
    client.post(CART, json={"productId": str(book["_id"]), "quantity": 1}, headers=headers)

    lines = cart_lines(client, headers)
    assert len(lines) == 1
    assert lines[0]["quantity"] == 2
    assert "unitType" not in lines[0]


def test_packet_requires_packet_pricing(client, user, auth, make_product):
    pen = make_product()
    res = client.post(CART, json={"productId": str(pen["_id"]), "unitType": "Packet"}, headers=auth(user))
    assert res.status_code == 400


def test_unknown_and_malformed_product_ids(client, user, auth):
    headers = auth(user)
    res = client.post(CART, json={"productId": str(ObjectId())}, headers=headers)
    assert res.status_code == 404
    res = client.post(CART, json={"productId": "abc"}, headers=headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid ID: abc"


def test_quantity_must_be_positive(client, user, auth, make_product):
    pen = make_product()
    res = client.post(CART, json={"productId": str(pen["_id"]), "quantity": 0}, headers=auth(user))
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_update_quantity_replaces_value(client, user, auth, make_product):
    pen = make_product()
    headers = auth(user)
    client.post(CART, json={"productId": str(pen["_id"]), "quantity": 4}, headers=headers)
    item_id = cart_lines(client, headers)[0]["id"]

    res = client.put(f"{CART}/{item_id}", json={"quantity": 2}, headers=headers)
    assert res.status_code == 200
    assert cart_lines(client, headers)[0]["quantity"] == 2


def test_changing_unit_type_into_existing_line_merges(client, user, auth, make_product):
    pen = make_product(unitType="Packet", pricePerPacket=180, pricePerPiece=20)
    headers = auth(user)
    client.post(CART, json={"productId": str(pen["_id"]), "quantity": 2, "unitType": "Piece"}, headers=headers)
    client.post(CART, json={"productId": str(pen["_id"]), "quantity": 1, "unitType": "Packet"}, headers=headers)
    lines = cart_lines(client, headers)
    assert len(lines) == 2
    piece_line = next(l for l in lines if l["unitType"] == "Piece")

    res = client.put(f"{CART}/{piece_line['id']}", json={"unitType": "Packet"}, headers=headers)
    assert res.status_code == 200

    lines = cart_lines(client, headers)
    assert len(lines) == 1
    assert lines[0]["unitType"] == "Packet"
    assert lines[0]["quantity"] == 3


def test_changing_unit_type_without_match_switches_line(client, user, auth, make_product):
    pen = make_product(unitType="Packet", pricePerPacket=180, pricePerPiece=20)
    headers = auth(user)
    client.post(CART, json={"productId": str(pen["_id"]), "quantity": 2, "unitType": "Piece"}, headers=headers)
    item_id = cart_lines(client, headers)[0]["id"]

    client.put(f"{CART}/{item_id}", json={"unitType": "Packet", "quantity": 5}, headers=headers)
    lines = cart_lines(client, headers)
    assert [(l["id"], l["unitType"], l["quantity"]) for l in lines] == [(item_id, "Packet", 5)]


def test_book_line_rejects_unit_type_change(client, user, auth, make_product):
    book = make_product(category="Book")
    headers = auth(user)
    client.post(CART, json={"productId": str(book["_id"])}, headers=headers)
    item_id = cart_lines(client, headers)[0]["id"]

    res = client.put(f"{CART}/{item_id}", json={"unitType": "Piece"}, headers=headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Cannot change unit type for a book"


def test_update_and_remove_report_missing_cart_or_line(client, user, auth, make_product):
    headers = auth(user)
    missing = str(ObjectId())
    res = client.put(f"{CART}/{missing}", json={"quantity": 1}, headers=headers)
    assert res.status_code == 404
    assert res.json()["message"] == "Cart not found"

    client.post(CART, json={"productId": str(make_product()["_id"])}, headers=headers)
    res = client.put(f"{CART}/{missing}", json={"quantity": 1}, headers=headers)
    assert res.status_code == 404
    assert res.json()["message"] == "Cart item not found"
    res = client.delete(f"{CART}/{missing}", headers=headers)
    assert res.status_code == 404


def test_remove_item_and_clear(client, user, auth, make_product):
    headers = auth(user)
    pen = make_product()
    book = make_product(category="Book")
    client.post(CART, json={"productId": str(pen["_id"])}, headers=headers)
    client.post(CART, json={"productId": str(book["_id"])}, headers=headers)
    lines = cart_lines(client, headers)

    res = client.delete(f"{CART}/{lines[0]['id']}", headers=headers)
    assert res.status_code == 200
    assert len(cart_lines(client, headers)) == 1

    res = client.delete(CART, headers=headers)
    assert res.status_code == 200
    assert cart_lines(client, headers) == []


def test_clear_without_cart_is_not_an_error(client, user, auth):
    assert client.delete(CART, headers=auth(user)).status_code == 200


def test_cart_requires_login(client):
    res = client.get(CART)
    assert res.status_code == 401
    assert res.json() == {"success": False, "message": "Login first to access this resource"}
