from fastapi import status

from warehouse_core.app import models

NEW_PRODUCT = {
    "sku": "desk-001",
    "name": "Office Desk",
    "category": "Furniture",
    "unit_of_measure": "Units",
    "on_hand_quantity": 12,
    "minimum_quantity": 5,
    "price_per_unit": "149.90",
}


class TestProductCatalog:

    def test_create_product(self, client, manager_headers):
        response = client.post("/products", json=NEW_PRODUCT, headers=manager_headers)
        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["sku"] == "DESK-001"
        assert data["on_hand_quantity"] == 12
        assert data["free_to_use_quantity"] == 12
        assert data["price_per_unit"] == "149.90"
        assert data["is_low_stock"] is False

    def test_duplicate_sku(self, client, manager_headers):
        client.post("/products", json=NEW_PRODUCT, headers=manager_headers)
        response = client.post("/products", json=NEW_PRODUCT, headers=manager_headers)
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_staff_cannot_create(self, client, staff_headers):
        response = client.post("/products", json=NEW_PRODUCT, headers=staff_headers)
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_negative_price_rejected(self, client, manager_headers):
        response = client.post("/products", json={**NEW_PRODUCT, "price_per_unit": "-1"}, headers=manager_headers)
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_search_and_low_stock(self, client, staff_headers, widget, gadget):
        found = client.get("/products", params={"search": "gadg"}, headers=staff_headers).json()
        assert [p["sku"] for p in found] == ["GADGET-1"]

        low = client.get("/products", params={"low_stock": True}, headers=staff_headers).json()
        assert [p["sku"] for p in low] == ["WIDGET-1"]


class TestProductUpdates:

    def test_update_master_data(self, client, manager_headers, gadget):
        response = client.patch(
            f"/products/{gadget.id}",
            json={"name": "Gadget Pro", "price_per_unit": "2.50"},
            headers=manager_headers,
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["name"] == "Gadget Pro"
        assert response.json()["price_per_unit"] == "2.50"
        assert response.json()["on_hand_quantity"] == 20

    def test_on_hand_is_not_writable(self, client, db, manager_headers, gadget):
        response = client.patch(
            f"/products/{gadget.id}", json={"on_hand_quantity": 999}, headers=manager_headers
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        db.expire_all()
        assert db.get(models.Product, gadget.id).on_hand_quantity == 20

    def test_reserved_cannot_exceed_on_hand(self, client, manager_headers, gadget):
        response = client.patch(
            f"/products/{gadget.id}", json={"reserved_quantity": 21}, headers=manager_headers
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestProductDeletion:

    def test_delete_unused_product(self, client, manager_headers, widget):
        response = client.delete(f"/products/{widget.id}", headers=manager_headers)
        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert client.get(f"/products/{widget.id}", headers=manager_headers).status_code == 404

    def test_referenced_product_is_kept(self, client, manager_headers, widget):
        client.post(
            "/api/receipts",
            json={"line_items": [{"product_id": widget.id, "quantity_received": 1}]},
            headers=manager_headers,
        )
        response = client.delete(f"/products/{widget.id}", headers=manager_headers)
        assert response.status_code == status.HTTP_409_CONFLICT
