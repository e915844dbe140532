import os

from bson import ObjectId

from conftest import PNG

PRODUCTS = "/api/v1/products"
ADMIN_PRODUCTS = "/api/v1/admin/products"

BOOK = {
    "name": "Physics Part I",
    "description": "NCERT physics",
    "category": "Book",
    "subCategory": "Academic",
    "academicCategory": "Science",
    "class": "11",
    "marketPrice": 500,
    "priceToSell": 450,
}


def upload_path(settings, relative):
    return os.path.join(settings.upload_dir, relative[len("uploads/"):])


def test_admin_creates_book_from_json(client, admin, auth):
    res = client.post(ADMIN_PRODUCTS, json={**BOOK, "unitType": "Piece", "salesCount": 99}, headers=auth(admin))
    assert res.status_code == 201, res.json()
    product = res.json()["product"]
    assert product["class"] == "11"
    assert product["priceToSell"] == 450
    assert product["salesCount"] == 0
    assert product["ratings"] == 0
    assert product["user"] == str(admin["_id"])
    # pricing fields of the other category family are dropped
    assert "unitType" not in product


def test_book_rules_are_validated(client, admin, auth):
    body = {k: v for k, v in BOOK.items() if k != "class"}
    res = client.post(ADMIN_PRODUCTS, json=body, headers=auth(admin))
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Class is required for academic books"}

    res = client.post(ADMIN_PRODUCTS, json={**BOOK, "priceToSell": 0}, headers=auth(admin))
    assert res.status_code == 400


def test_non_book_requires_unit_type_and_prices(client, admin, auth):
    body = {"name": "Football", "description": "Size 5", "category": "Sport", "pricePerPiece": 1200}
    res = client.post(ADMIN_PRODUCTS, json=body, headers=auth(admin))
    assert res.status_code == 400
    assert "Unit type" in res.json()["message"]

    res = client.post(ADMIN_PRODUCTS, json={**body, "unitType": "Packet"}, headers=auth(admin))
    assert res.status_code == 400
    assert "packet" in res.json()["message"]


def test_admin_creates_product_with_images(client, admin, auth, settings):
    form = {"name": "Gift Box", "description": "Wrapped", "category": "Gift", "unitType": "Piece",
            "pricePerPiece": "250", "pricePerPacket": ""}
    files = [("images", ("front.png", PNG, "image/png")), ("images", ("back.jpg", PNG, "image/jpeg"))]
    res = client.post(ADMIN_PRODUCTS, data=form, files=files, headers=auth(admin))
    assert res.status_code == 201, res.json()

    product = res.json()["product"]
    assert product["pricePerPiece"] == 250
    assert len(product["images"]) == 2
    for path in product["images"]:
        assert path.startswith("uploads/products/images-")
        assert os.path.exists(upload_path(settings, path))


def test_only_images_are_accepted(client, admin, auth):
    form = {"name": "Gift Box", "description": "Wrapped", "category": "Gift", "unitType": "Piece",
            "pricePerPiece": "250"}
    files = [("images", ("notes.txt", b"hello", "text/plain"))]
    res = client.post(ADMIN_PRODUCTS, data=form, files=files, headers=auth(admin))
    assert res.status_code == 400
    assert res.json()["message"].startswith("File upload only supports")


def test_customers_cannot_manage_products(client, user, auth):
    res = client.post(ADMIN_PRODUCTS, json=BOOK, headers=auth(user))
    assert res.status_code == 403
    assert res.json()["message"] == "Role (user) is not allowed to access this resource"


def test_update_keeps_market_price_and_prunes_images(client, admin, auth, settings):
    headers = auth(admin)
    files = [("images", ("a.png", PNG, "image/png")), ("images", ("b.png", PNG, "image/png"))]
    form = {k: str(v) for k, v in BOOK.items()}
    product = client.post(ADMIN_PRODUCTS, data=form, files=files, headers=headers).json()["product"]
    keep, drop = product["images"]

    res = client.put(
        f"{ADMIN_PRODUCTS}/{product['id']}",
        data={"marketPrice": "900", "priceToSell": "420", "imagesToKeep": f'["{keep}"]'},
        files=[("images", ("c.gif", PNG, "image/gif"))],
        headers=headers,
    )
    assert res.status_code == 200, res.json()
    updated = res.json()["product"]
    assert updated["marketPrice"] == 500
    assert updated["priceToSell"] == 420
    assert updated["images"][0] == keep
    assert len(updated["images"]) == 2
    assert updated["salesCount"] == 0
    assert updated["user"] == str(admin["_id"])
    assert not os.path.exists(upload_path(settings, drop))
    assert os.path.exists(upload_path(settings, keep))


def test_update_with_json_body(client, admin, auth, make_product):
    pen = make_product()
    res = client.put(f"{ADMIN_PRODUCTS}/{pen['_id']}", json={"pricePerPiece": 25}, headers=auth(admin))
    assert res.status_code == 200
    assert res.json()["product"]["pricePerPiece"] == 25
    assert res.json()["product"]["name"] == "Classmate Pen"


def test_delete_product_removes_files(client, admin, auth, settings):
    headers = auth(admin)
    form = {"name": "Gift Box", "description": "Wrapped", "category": "Gift", "unitType": "Piece",
            "pricePerPiece": "250"}
    product = client.post(
        ADMIN_PRODUCTS, data=form, files=[("images", ("a.png", PNG, "image/png"))], headers=headers
    ).json()["product"]

    res = client.delete(f"{ADMIN_PRODUCTS}/{product['id']}", headers=headers)
    assert res.status_code == 200
    assert not os.path.exists(upload_path(settings, product["images"][0]))
    assert client.get(f"{PRODUCTS}/{product['id']}").status_code == 404


def test_list_filters_and_keyword(client, make_product):
    make_product(category="Book", name="Physics", subCategory="Academic", academicCategory="Science", **{"class": "11"})
    make_product(category="Book", name="Chemistry", subCategory="Academic", academicCategory="Science", **{"class": "12"})
    make_product(name="Gel Pen")

    res = client.get(PRODUCTS, params={"category": "Book"})
    assert res.json()["filteredProductsCount"] == 2

    res = client.get(PRODUCTS, params={"category": "Book", "class": "12"})
    assert [p["name"] for p in res.json()["products"]] == ["Chemistry"]

    res = client.get(PRODUCTS, params={"keyword": "pen"})
    assert [p["name"] for p in res.json()["products"]] == ["Gel Pen"]


def test_best_sellers_and_recent(client, make_product):
    make_product(name="Never Sold")
    make_product(name="Popular", salesCount=9)
    make_product(name="Sometimes", salesCount=2)

    names = [p["name"] for p in client.get(f"{PRODUCTS}/best-sellers").json()["products"]]
    assert names == ["Popular", "Sometimes"]

    recent = client.get(f"{PRODUCTS}/recent", params={"limit": 2}).json()["products"]
    assert len(recent) == 2


def test_get_product_errors(client):
    assert client.get(f"{PRODUCTS}/{ObjectId()}").status_code == 404
    assert client.get(f"{PRODUCTS}/not-an-id").status_code == 400


def test_review_upsert_recomputes_rating(client, make_user, auth, make_product, db):
    book = make_product(category="Book")
    first, second = make_user(), make_user()

    for reviewer, rating in ((first, 3), (second, 5), (first, 4)):
        res = client.put(
            "/api/v1/reviews",
            json={"productId": str(book["_id"]), "rating": rating, "comment": "ok"},
            headers=auth(reviewer),
        )
        assert res.status_code == 200

    stored = db.products.find_one({"_id": book["_id"]})
    assert stored["numOfReviews"] == 2
    assert stored["ratings"] == 4.5

    reviews = client.get("/api/v1/reviews", params={"id": str(book["_id"])}).json()["reviews"]
    assert sorted(r["rating"] for r in reviews) == [4, 5]


def test_review_rating_bounds(client, user, auth, make_product):
    book = make_product(category="Book")
    res = client.post(
        "/api/v1/reviews",
        json={"productId": str(book["_id"]), "rating": 6, "comment": "great"},
        headers=auth(user),
    )
    assert res.status_code == 400


def test_admin_deletes_reviews(client, user, admin, auth, make_product, db):
    book = make_product(category="Book")
    client.post(
        "/api/v1/reviews",
        json={"productId": str(book["_id"]), "rating": 2, "comment": "meh"},
        headers=auth(user),
    )
    review_id = str(db.products.find_one({"_id": book["_id"]})["reviews"][0]["_id"])

    res = client.delete(
        "/api/v1/admin/reviews", params={"productId": str(book["_id"]), "id": review_id}, headers=auth(admin)
    )
    assert res.status_code == 200
    stored = db.products.find_one({"_id": book["_id"]})
    assert stored["reviews"] == []
    assert stored["numOfReviews"] == 0
    assert stored["ratings"] == 0


def test_image_paths_must_stay_inside_the_upload_dir(client, admin, auth, tmp_path):
    outside = tmp_path / "keep-me.txt"
    outside.write_text("not an upload")
    res = client.post(ADMIN_PRODUCTS, json={**BOOK, "images": ["uploads/../keep-me.txt"]}, headers=auth(admin))
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid image path: uploads/../keep-me.txt"


def test_delete_never_touches_files_outside_the_upload_dir(client, admin, auth, make_product, tmp_path):
    outside = tmp_path / "keep-me.txt"
    outside.write_text("not an upload")
    product = make_product(images=["uploads/../keep-me.txt", "uploads/products/../../keep-me.txt"])

    assert client.delete(f"{ADMIN_PRODUCTS}/{product['_id']}", headers=auth(admin)).status_code == 200
    assert outside.exists()
