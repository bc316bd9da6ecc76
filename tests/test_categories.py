"""Tests for the category endpoints."""

from http import HTTPStatus


def test_list_includes_product_counts(client):
    response = client.get("/api/categories")

    assert response.status_code == HTTPStatus.OK
    categories = response.json()["categories"]
    assert [c["slug"] for c in categories] == ["ceramics"]
    assert categories[0]["productCount"] == 3


def test_create_and_list_sorted_by_name(client, admin_headers):
    response = client.post(
        "/api/categories",
        json={"name": "Basketry", "slug": "basketry", "description": "Woven goods"},
        headers=admin_headers,
    )

    assert response.status_code == HTTPStatus.CREATED
    assert response.json()["category"]["slug"] == "basketry"
    listed = client.get("/api/categories").json()["categories"]
    assert [c["name"] for c in listed] == ["Basketry", "Ceramics"]
    assert listed[0]["productCount"] == 0


def test_create_requires_admin(client, user_headers):
    response = client.post("/api/categories", json={"name": "X", "slug": "x"},
                           headers=user_headers)
    assert response.status_code == HTTPStatus.UNAUTHORIZED


def test_duplicate_slug_conflicts(client, admin_headers):
    response = client.post("/api/categories", json={"name": "Pots", "slug": "ceramics"},
                           headers=admin_headers)

    assert response.status_code == HTTPStatus.CONFLICT
    assert response.json() == {"error": "Category with this slug already exists"}


def test_invalid_image_url(client, admin_headers):
    response = client.post(
        "/api/categories",
        json={"name": "Glass", "slug": "glass", "image": "not-a-url"},
        headers=admin_headers,
    )
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json()["details"][0]["field"] == "image"


def test_update_keeps_unspecified_fields(client, admin_headers):
    client.put("/api/categories/cat-ceramics", json={"description": "Fired clay"},
               headers=admin_headers)

    response = client.put("/api/categories/cat-ceramics", json={"name": "Pottery"},
                          headers=admin_headers)

    assert response.status_code == HTTPStatus.OK
    category = response.json()["category"]
    assert category["name"] == "Pottery"
    assert category["slug"] == "ceramics"
    assert category["description"] == "Fired clay"

    cleared = client.put("/api/categories/cat-ceramics", json={"description": None},
                         headers=admin_headers).json()["category"]
    assert cleared["description"] is None


def test_update_missing_category(client, admin_headers):
    response = client.put("/api/categories/cat-nope", json={"name": "Y"}, headers=admin_headers)
    assert response.status_code == HTTPStatus.NOT_FOUND


def test_delete_category_with_products_conflicts(client, admin_headers):
    response = client.delete("/api/categories/cat-ceramics", headers=admin_headers)

    assert response.status_code == HTTPStatus.CONFLICT
    assert response.json() == {
        "error": "Cannot delete category with existing products",
        "details": {"productCount": 3},
    }


def test_delete_empty_category(client, admin_headers):
    created = client.post("/api/categories", json={"name": "Glass", "slug": "glass"},
                          headers=admin_headers).json()["category"]

    response = client.delete(f"/api/categories/{created['id']}", headers=admin_headers)

    assert response.status_code == HTTPStatus.OK
    assert response.json() == {"message": "Category deleted successfully"}
    assert [c["slug"] for c in client.get("/api/categories").json()["categories"]] == ["ceramics"]
