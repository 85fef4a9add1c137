from io import BytesIO

import pandas as pd
from fastapi import status

from warehouse_core.app import models
from warehouse_core.app.excel import _find_column_mapping, XLSX_MEDIA_TYPE


class TestColumnMapping:

    def test_common_names(self):
        mapping = _find_column_mapping(["Item Code", "Product Name", "Qty", "Unit Price", "UOM"])
        assert mapping == {
            "Item Code": "sku",
            "Product Name": "name",
            "Qty": "on_hand_quantity",
            "Unit Price": "price_per_unit",
            "UOM": "unit_of_measure",
        }

    def test_first_column_wins(self):
        assert _find_column_mapping(["SKU", "Code"]) == {"SKU": "sku"}


class TestProductImport:

    def test_creates_new_and_skips_existing(self, client, db, manager_headers, widget):
        csv = b"SKU,Name,Category,Qty,Price\nnew-1,Thing,Parts,4,1.5\nWIDGET-1,Duplicate,Parts,99,1\n"
        response = client.post(
            "/excel/products/import",
            files={"file": ("products.csv", csv, "text/csv")},
            headers=manager_headers,
        )
        assert response.status_code == status.HTTP_200_OK, response.text
        data = response.json()
        assert data["created"] == ["NEW-1"]
        assert data["skipped"] == ["WIDGET-1"]

        db.expire_all()
        new = db.query(models.Product).filter_by(sku="NEW-1").one()
        assert new.on_hand_quantity == 4
        assert str(new.price_per_unit) == "1.50"
        assert db.get(models.Product, widget.id).on_hand_quantity == 0

    def test_reports_bad_rows(self, client, manager_headers):
        csv = b"SKU,Name,Qty\nA-1,Alpha,-2\n,Nameless,1\n"
        response = client.post(
            "/excel/products/import",
            files={"file": ("products.csv", csv, "text/csv")},
            headers=manager_headers,
        )
        data = response.json()
        assert data["created"] == []
        assert len(data["errors"]) == 2

    def test_requires_sku_and_name_columns(self, client, manager_headers):
        response = client.post(
            "/excel/products/import",
            files={"file": ("products.csv", b"Qty,Price\n1,2\n", "text/csv")},
            headers=manager_headers,
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_rejects_unknown_format(self, client, manager_headers):
        response = client.post(
            "/excel/products/import",
            files={"file": ("products.txt", b"hello", "text/plain")},
            headers=manager_headers,
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestExport:

    def test_products_export(self, client, manager_headers, widget, gadget):
        response = client.get("/excel/products/export", headers=manager_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == XLSX_MEDIA_TYPE

        df = pd.read_excel(BytesIO(response.content), engine="openpyxl")
        assert list(df["SKU"]) == ["GADGET-1", "WIDGET-1"]
        assert list(df["On Hand"]) == [20, 0]

    def test_export_needs_permission(self, client, staff_headers):
        response = client.get("/excel/products/export", headers=staff_headers)
        assert response.status_code == status.HTTP_403_FORBIDDEN
