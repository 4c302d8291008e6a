"""
Tests for ownership-filtered categories
"""


def _create(client, user, **payload):
    return client.post("/categories", json=payload, headers=user["headers"])


def _default_id(client, user, name):
    cats = client.get("/categories", headers=user["headers"]).json()["data"]["categories"]
    return next(c["id"] for c in cats if c["name"] == name and c["is_default"])


def test_list_includes_defaults_for_every_account(client, alice, bob):
    for user in (alice, bob):
        data = client.get("/categories", headers=user["headers"]).json()["data"]
        defaults = [c for c in data["categories"] if c["is_default"]]
        assert len(defaults) == 12
        assert all(c["user_id"] is None for c in defaults)


def test_list_filters_by_type(client, alice):
    data = client.get("/categories", params={"type": "income"}, headers=alice["headers"]).json()["data"]
    assert data["count"] == 4
    assert {c["type"] for c in data["categories"]} == {"income"}

    resp = client.get("/categories", params={"type": "transfer"}, headers=alice["headers"])
    assert resp.status_code == 400


def test_create_and_read_own_category(client, alice):
    resp = _create(client, alice, name="Coffee", type="outcome", icon="cup", color="#aa5500")
    assert resp.status_code == 201
    cat = resp.json()["data"]
    assert cat["user_id"] == alice["userId"]
    assert cat["is_default"] is False
    assert cat["color"] == "#aa5500"

    resp = client.get(f"/categories/{cat['id']}", headers=alice["headers"])
    assert resp.status_code == 200
    assert resp.json()["data"]["name"] == "Coffee"


def test_create_defaults_icon_and_color(client, alice):
    cat = _create(client, alice, name="Gifts", type="outcome").json()["data"]
    assert cat["icon"] == "default"
    assert cat["color"] == "#000000"


def test_create_validates_input(client, alice):
    assert _create(client, alice, name="", type="outcome").json()["error"] == "invalid_name"
    assert _create(client, alice, name="X" * 51, type="outcome").json()["error"] == "invalid_name"
    assert _create(client, alice, name="Gifts", type="spend").json()["error"] == "invalid_type"
    assert _create(client, alice, name="Gifts", type="outcome", color="red").json()["error"] == "invalid_color"


def test_duplicate_category_is_400(client, alice, bob):
    assert _create(client, alice, name="Coffee", type="outcome").status_code == 201
    resp = _create(client, alice, name="Coffee", type="outcome")
    assert resp.status_code == 400
    assert resp.json()["error"] == "category_exists"

    # Same name with the other type, or for another account, is fine.
    assert _create(client, alice, name="Coffee", type="income").status_code == 201
    assert _create(client, bob, name="Coffee", type="outcome").status_code == 201


def test_own_category_may_shadow_a_default_name(client, alice):
    assert _create(client, alice, name="Food", type="outcome").status_code == 201


def test_other_accounts_category_is_invisible(client, alice, bob):
    cat = _create(client, alice, name="Coffee", type="outcome").json()["data"]

    names = [c["name"] for c in client.get("/categories", headers=bob["headers"]).json()["data"]["categories"]]
    assert "Coffee" not in names

    assert client.get(f"/categories/{cat['id']}", headers=bob["headers"]).status_code == 404
    assert client.put(f"/categories/{cat['id']}", json={"name": "Mine"}, headers=bob["headers"]).status_code == 404
    assert client.delete(f"/categories/{cat['id']}", headers=bob["headers"]).status_code == 404

    # Untouched for the owner.
    assert client.get(f"/categories/{cat['id']}", headers=alice["headers"]).json()["data"]["name"] == "Coffee"


def test_default_category_is_readable_but_immutable(client, alice):
    food_id = _default_id(client, alice, "Food")

    assert client.get(f"/categories/{food_id}", headers=alice["headers"]).status_code == 200

    resp = client.put(f"/categories/{food_id}", json={"name": "Snacks"}, headers=alice["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"] == "default_category_immutable"

    resp = client.delete(f"/categories/{food_id}", headers=alice["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"] == "default_category_undeletable"


def test_partial_update_touches_only_given_fields(client, alice):
    cat = _create(client, alice, name="Coffee", type="outcome", icon="cup", color="#112233").json()["data"]

    resp = client.put(f"/categories/{cat['id']}", json={"color": "#445566"}, headers=alice["headers"])
    updated = resp.json()["data"]
    assert resp.status_code == 200
    assert updated["color"] == "#445566"
    assert updated["name"] == "Coffee"
    assert updated["icon"] == "cup"


def test_empty_update_changes_nothing_but_updated_at(client, alice):
    cat = _create(client, alice, name="Coffee", type="outcome", icon="cup").json()["data"]

    resp = client.put(f"/categories/{cat['id']}", json={}, headers=alice["headers"])
    updated = resp.json()["data"]
    assert resp.status_code == 200
    for key in ("name", "type", "icon", "color", "user_id", "created_at"):
        assert updated[key] == cat[key]
    assert updated["updated_at"] >= cat["updated_at"]


def test_rename_onto_existing_name_is_400(client, alice):
    _create(client, alice, name="Coffee", type="outcome")
    tea = _create(client, alice, name="Tea", type="outcome").json()["data"]
    resp = client.put(f"/categories/{tea['id']}", json={"name": "Coffee"}, headers=alice["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"] == "category_exists"


def test_delete_unused_category(client, alice):
    cat = _create(client, alice, name="Coffee", type="outcome").json()["data"]
    resp = client.delete(f"/categories/{cat['id']}", headers=alice["headers"])
    assert resp.status_code == 200
    assert resp.json()["data"] == {"id": cat["id"]}
    assert client.get(f"/categories/{cat['id']}", headers=alice["headers"]).status_code == 404


def test_delete_category_in_use_is_400(client, alice):
    food = _create(client, alice, name="Food", type="outcome").json()["data"]
    bill = client.post(
        "/bills",
        json={"amount": 50, "type": "outcome", "category_id": food["id"], "date": "2024-01-01"},
        headers=alice["headers"],
    )
    assert bill.status_code == 201

    resp = client.delete(f"/categories/{food['id']}", headers=alice["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"] == "category_in_use"


def test_categories_require_token(client):
    assert client.get("/categories").status_code == 401
    assert client.post("/categories", json={"name": "X", "type": "income"}).status_code == 401
