from datetime import datetime

import pytest
from fastapi import HTTPException, status

from warehouse_core.app import models
from warehouse_core.app.models import MoveType
from warehouse_core.app.services.inventory_service import (
    InventoryAdjustmentService, InsufficientStockError, InvalidOperationError,
    StockAdjustmentService, StockMoveQueryService,
)

YEAR = datetime.utcnow().year


class TestAdjustInventory:

    def test_increase_writes_ledger_row(self, db, widget):
        move = InventoryAdjustmentService.adjust_inventory(
            db, widget.id, 10, MoveType.RECEIPT, document_type="receipt", document_number="REC/X/1"
        )
        db.commit()

        assert db.get(models.Product, widget.id).on_hand_quantity == 10
        assert move.reference == f"MOV/{YEAR}/0001"
        assert (move.quantity_before, move.quantity_change, move.quantity_after) == (0, 10, 10)
        assert move.document_number == "REC/X/1"

    def test_decrease(self, db, gadget):
        move = InventoryAdjustmentService.adjust_inventory(db, gadget.id, -5, MoveType.DELIVERY)
        db.commit()

        assert db.get(models.Product, gadget.id).on_hand_quantity == 15
        assert move.quantity_before == 20
        assert move.quantity_after == 15

    def test_cannot_go_negative(self, db, scarce):
        with pytest.raises(InsufficientStockError):
            InventoryAdjustmentService.adjust_inventory(db, scarce.id, -5, MoveType.DELIVERY)
        db.rollback()

        assert db.get(models.Product, scarce.id).on_hand_quantity == 3
        assert db.query(models.StockMove).count() == 0

    def test_reserved_stock_is_protected(self, db, gadget):
        gadget.reserved_quantity = 8
        db.commit()

        with pytest.raises(InsufficientStockError):
            InventoryAdjustmentService.adjust_inventory(db, gadget.id, -13, MoveType.DELIVERY)
        db.rollback()

        InventoryAdjustmentService.adjust_inventory(db, gadget.id, -12, MoveType.DELIVERY)
        db.commit()
        assert db.get(models.Product, gadget.id).on_hand_quantity == 8

    def test_unknown_product(self, db):
        with pytest.raises(HTTPException) as exc:
            InventoryAdjustmentService.adjust_inventory(db, 999, 1, MoveType.RECEIPT)
        assert exc.value.status_code == 404

    def test_zero_delta_is_rejected(self, db, widget):
        with pytest.raises(InvalidOperationError):
            InventoryAdjustmentService.adjust_inventory(db, widget.id, 0, MoveType.RECEIPT)

    def test_does_not_commit(self, db, widget):
        InventoryAdjustmentService.adjust_inventory(db, widget.id, 4, MoveType.RECEIPT)
        db.rollback()
        assert db.get(models.Product, widget.id).on_hand_quantity == 0


class TestStockMoveQueries:

    def test_filters_by_product(self, db, widget, gadget):
        InventoryAdjustmentService.adjust_inventory(db, widget.id, 1, MoveType.RECEIPT)
        InventoryAdjustmentService.adjust_inventory(db, gadget.id, -1, MoveType.DELIVERY)
        InventoryAdjustmentService.adjust_inventory(db, widget.id, 2, MoveType.RECEIPT)
        db.commit()

        moves = StockMoveQueryService.list_moves(db, product_id=widget.id)
        assert [m.quantity_change for m in moves] == [2, 1]


class TestManualAdjustments:

    def test_service_posts_and_commits(self, db, widget):
        move = StockAdjustmentService.record_adjustment(db, widget.id, 7, note="Found in back room")
        db.rollback()

        assert db.get(models.Product, widget.id).on_hand_quantity == 7
        assert move.move_type == MoveType.ADJUSTMENT
        assert move.document_type == "adjustment"
        assert move.from_location == "Inventory adjustment"
        assert move.note == "Found in back room"

    def test_api_decrease(self, client, db, manager_headers, gadget):
        response = client.post("/api/stock-moves", json={
            "product_id": gadget.id, "quantity_change": -3,
            "from_location": "WH/Stock", "note": "Damaged in transit",
        }, headers=manager_headers)
        assert response.status_code == status.HTTP_201_CREATED, response.text
        data = response.json()
        assert (data["quantity_before"], data["quantity_after"]) == (20, 17)
        assert data["move_type"] == "adjustment"
        assert data["to_location"] == "Inventory adjustment"

        db.expire_all()
        assert db.get(models.Product, gadget.id).on_hand_quantity == 17

    def test_api_refuses_going_below_reserved(self, client, db, manager_headers, scarce):
        response = client.post(
            "/api/stock-moves", json={"product_id": scarce.id, "quantity_change": -4}, headers=manager_headers
        )
        assert response.status_code == status.HTTP_409_CONFLICT

        db.expire_all()
        assert db.get(models.Product, scarce.id).on_hand_quantity == 3
        assert db.query(models.StockMove).count() == 0

    def test_api_rejects_zero(self, client, manager_headers, widget):
        response = client.post(
            "/api/stock-moves", json={"product_id": widget.id, "quantity_change": 0}, headers=manager_headers
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_staff_cannot_adjust(self, client, staff_headers, widget):
        response = client.post(
            "/api/stock-moves", json={"product_id": widget.id, "quantity_change": 1}, headers=staff_headers
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN
