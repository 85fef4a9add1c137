import re

import pytest
from fastapi import status

from warehouse_core.app import models
from warehouse_core.app.models import DeliveryStatus
from warehouse_core.app.services.document_service import DeliveryService
from warehouse_core.app.services.inventory_service import InconsistentInputError


def create_delivery(client, headers, **payload):
    response = client.post("/api/deliveries", json=payload, headers=headers)
    assert response.status_code == status.HTTP_201_CREATED, response.text
    return response.json()["delivery"]


def transition(client, headers, delivery_id, target):
    return client.post(
        f"/api/deliveries/{delivery_id}/transition",
        json={"target_status": target},
        headers=headers,
    )


class TestDeliveryLifecycle:

    def test_ship_goods(self, client, db, manager_headers, customer, gadget):
        """Picked -> Packed -> Validated removes the packed quantity from stock"""
        delivery = create_delivery(
            client, manager_headers,
            customer_id=customer.id,
            line_items=[{"product_id": gadget.id, "quantity_picked": 5, "quantity_packed": 5}],
        )
        assert re.fullmatch(r"DO/\d{4}/0001", delivery["delivery_number"])
        assert delivery["status"] == "Picked"

        assert transition(client, manager_headers, delivery["id"], "Packed").status_code == 200
        response = transition(client, manager_headers, delivery["id"], "Validated")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "Validated"
        assert data["delivery"]["total"] == "10.00"

        db.expire_all()
        assert db.get(models.Product, gadget.id).on_hand_quantity == 15

        move = db.query(models.StockMove).one()
        assert move.quantity_change == -5
        assert move.to_location == customer.name

    def test_partial_packing_ships_packed_only(self, client, db, manager_headers, customer, gadget):
        delivery = create_delivery(
            client, manager_headers,
            customer_id=customer.id,
            line_items=[{"product_id": gadget.id, "quantity_picked": 5, "quantity_packed": 3}],
        )
        transition(client, manager_headers, delivery["id"], "Packed")
        response = transition(client, manager_headers, delivery["id"], "Validated")
        assert response.status_code == 200
        assert response.json()["delivery"]["total"] == "6.00"

        db.expire_all()
        assert db.get(models.Product, gadget.id).on_hand_quantity == 17

    def test_validated_again_is_a_no_op(self, client, db, manager_headers, customer, gadget):
        delivery = create_delivery(
            client, manager_headers,
            customer_id=customer.id,
            line_items=[{"product_id": gadget.id, "quantity_picked": 2, "quantity_packed": 2}],
        )
        transition(client, manager_headers, delivery["id"], "Packed")
        transition(client, manager_headers, delivery["id"], "Validated")
        response = transition(client, manager_headers, delivery["id"], "Validated")
        assert response.status_code == 200
        assert response.json()["changed"] is False

        db.expire_all()
        assert db.get(models.Product, gadget.id).on_hand_quantity == 18


class TestDeliveryGuards:

    def test_missing_customer(self, client, manager_headers, gadget):
        delivery = create_delivery(
            client, manager_headers,
            line_items=[{"product_id": gadget.id, "quantity_picked": 1}],
        )
        response = transition(client, manager_headers, delivery["id"], "Packed")
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["detail"] == "Please select a customer"

    def test_unpacked_line_blocks_validation(self, client, manager_headers, customer, gadget):
        delivery = create_delivery(
            client, manager_headers,
            customer_id=customer.id,
            line_items=[{"product_id": gadget.id, "quantity_picked": 4, "quantity_packed": 0}],
        )
        transition(client, manager_headers, delivery["id"], "Packed")
        response = transition(client, manager_headers, delivery["id"], "Validated")
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["detail"] == "Please ensure all items are picked and packed"

    def test_no_going_back(self, client, manager_headers, customer, gadget):
        delivery = create_delivery(
            client, manager_headers,
            customer_id=customer.id,
            line_items=[{"product_id": gadget.id, "quantity_picked": 1, "quantity_packed": 1}],
        )
        transition(client, manager_headers, delivery["id"], "Packed")
        response = transition(client, manager_headers, delivery["id"], "Picked")
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["detail"] == "Cannot move delivery from Packed to Picked"

    def test_vendor_only_contact_is_not_a_customer(self, client, manager_headers, vendor):
        response = client.post("/api/deliveries", json={"customer_id": vendor.id}, headers=manager_headers)
        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestPackedNeverExceedsPicked:

    def test_rejected_by_api(self, client, manager_headers, customer, gadget):
        response = client.post(
            "/api/deliveries",
            json={
                "customer_id": customer.id,
                "line_items": [{"product_id": gadget.id, "quantity_picked": 5, "quantity_packed": 7}],
            },
            headers=manager_headers,
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_rejected_by_service(self, db, gadget):
        delivery = DeliveryService.create_delivery(db, {})
        with pytest.raises(InconsistentInputError):
            DeliveryService.update_line_items(db, delivery.id, [
                {"product_id": gadget.id, "quantity_picked": 5, "quantity_packed": 7},
            ])
        assert db.get(models.DeliveryOrder, delivery.id).line_items == []


class TestInsufficientStock:

    def test_validation_fails_and_nothing_moves(self, client, db, manager_headers, customer, gadget, scarce):
        delivery = create_delivery(
            client, manager_headers,
            customer_id=customer.id,
            line_items=[
                {"product_id": gadget.id, "quantity_picked": 5, "quantity_packed": 5},
                {"product_id": scarce.id, "quantity_picked": 5, "quantity_packed": 5},
            ],
        )
        transition(client, manager_headers, delivery["id"], "Packed")
        response = transition(client, manager_headers, delivery["id"], "Validated")
        assert response.status_code == status.HTTP_409_CONFLICT
        assert "SCARCE-1" in response.json()["detail"]

        db.expire_all()
        assert db.get(models.Product, gadget.id).on_hand_quantity == 20
        assert db.get(models.Product, scarce.id).on_hand_quantity == 3
        assert db.query(models.StockMove).count() == 0

        order = db.get(models.DeliveryOrder, delivery["id"])
        assert order.status == DeliveryStatus.PACKED
        assert order.stock_posted is False


class TestDeliveryPermissions:

    def test_staff_cannot_validate(self, client, staff_headers, customer, gadget):
        delivery = create_delivery(
            client, staff_headers,
            customer_id=customer.id,
            line_items=[{"product_id": gadget.id, "quantity_picked": 1, "quantity_packed": 1}],
        )
        assert transition(client, staff_headers, delivery["id"], "Packed").status_code == 200
        response = transition(client, staff_headers, delivery["id"], "Validated")
        assert response.status_code == status.HTTP_403_FORBIDDEN
