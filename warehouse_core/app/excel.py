import logging
from datetime import datetime
from decimal import InvalidOperation
from io import BytesIO
from typing import Any, Dict, List, Optional

import pandas as pd
from fastapi import APIRouter, UploadFile, File, HTTPException, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from . import models
from .security import get_db, require_permission, Permission, sanitize_input
from .services.inventory_service import round_money

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/excel", tags=["excel"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _to_native(value: Any):
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if hasattr(value, "item"):
        try:
            return value.item()
        except (ValueError, AttributeError):
            return value
    return value


# Maps common spreadsheet column names to product fields
DEFAULT_COLUMN_MAPPINGS = {
    # SKU variations
    "sku": "sku", "code": "sku", "item code": "sku", "item_code": "sku",
    "product code": "sku", "product_code": "sku", "part no": "sku", "part_no": "sku",

    # Name variations
    "name": "name", "product": "name", "product name": "name", "product_name": "name",
    "item": "name", "item name": "name", "item_name": "name",

    # Category variations
    "category": "category", "type": "category", "group": "category",

    # Unit variations
    "unit": "unit_of_measure", "uom": "unit_of_measure", "units": "unit_of_measure",
    "unit of measure": "unit_of_measure", "unit_of_measure": "unit_of_measure",

    # Quantity variations
    "on hand": "on_hand_quantity", "on_hand": "on_hand_quantity", "on_hand_quantity": "on_hand_quantity",
    "quantity": "on_hand_quantity", "qty": "on_hand_quantity", "stock": "on_hand_quantity",

    # Reorder threshold variations
    "minimum": "minimum_quantity", "min": "minimum_quantity", "min qty": "minimum_quantity",
    "minimum_quantity": "minimum_quantity", "reorder level": "minimum_quantity",

    # Price variations
    "price": "price_per_unit", "unit price": "price_per_unit", "price_per_unit": "price_per_unit",
    "cost": "price_per_unit", "rate": "price_per_unit",

    # Supplier variations
    "supplier": "preferred_supplier", "vendor": "preferred_supplier",
    "preferred supplier": "preferred_supplier", "preferred_supplier": "preferred_supplier",

    # Notes variations
    "description": "description", "notes": "description", "remarks": "description",
}


def _find_column_mapping(columns: List[str]) -> dict:
    """
    Detect spreadsheet columns that map to product fields.
    The first column mapping to a field wins.
    """
    mapping = {}
    for col in columns:
        col_lower = str(col).lower().strip()
        if col_lower in DEFAULT_COLUMN_MAPPINGS:
            db_field = DEFAULT_COLUMN_MAPPINGS[col_lower]
            if db_field not in mapping.values():
                mapping[col] = db_field
    return mapping


def _read_file_to_dataframe(content: bytes, filename: str) -> Dict[str, pd.DataFrame]:
    """
    Read Excel (.xlsx) or CSV file content into pandas DataFrame(s).
    Returns dict of {sheet_name: dataframe} for consistency.
    """
    filename_lower = filename.lower()

    if filename_lower.endswith(".xlsx"):
        try:
            return pd.read_excel(BytesIO(content), sheet_name=None, engine="openpyxl")
        except Exception as exc:
            raise HTTPException(status_code=400, detail=f"Failed to read Excel file: {exc}")

    if filename_lower.endswith(".csv"):
        for encoding in ['utf-8', 'latin-1', 'cp1252']:
            try:
                return {"Sheet1": pd.read_csv(BytesIO(content), encoding=encoding)}
            except UnicodeDecodeError:
                continue
            except Exception as exc:
                raise HTTPException(status_code=400, detail=f"Failed to read CSV file: {exc}")
        raise HTTPException(status_code=400, detail="Could not decode CSV file")

    raise HTTPException(status_code=400, detail="Only .xlsx and .csv files are supported")


def _dataframe_to_xlsx(df: pd.DataFrame, filename: str, sheet_name: str) -> StreamingResponse:
    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)

        from openpyxl.styles import Font, PatternFill
        from openpyxl.utils import get_column_letter

        worksheet = writer.sheets[sheet_name]
        for cell in worksheet[1]:
            cell.font = Font(bold=True, color="FFFFFF")
            cell.fill = PatternFill("solid", fgColor="366092")

        for col_idx, column in enumerate(worksheet.columns, 1):
            width = max((len(str(c.value)) for c in column if c.value is not None), default=0)
            worksheet.column_dimensions[get_column_letter(col_idx)].width = min(max(width + 2, 10), 50)

    output.seek(0)
    stamp = datetime.utcnow().strftime("%Y%m%d")
    return StreamingResponse(
        output,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}_{stamp}.xlsx"}
    )


# =============================================================================
# EXPORT
# =============================================================================

PRODUCT_EXPORT_COLUMNS = [
    "SKU", "Name", "Category", "Unit", "On Hand", "Reserved", "Free To Use",
    "Minimum", "Price", "Preferred Supplier", "Location",
]


@router.get("/products/export")
async def export_products(
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.REPORT_EXPORT))
):
    products = db.query(models.Product).order_by(models.Product.sku).all()
    rows = [
        {
            "SKU": p.sku,
            "Name": p.name,
            "Category": p.category,
            "Unit": p.unit_of_measure,
            "On Hand": p.on_hand_quantity,
            "Reserved": p.reserved_quantity,
            "Free To Use": p.free_to_use_quantity,
            "Minimum": p.minimum_quantity,
            "Price": float(p.price_per_unit),
            "Preferred Supplier": p.preferred_supplier,
            "Location": p.location.shortcode if p.location else None,
        }
        for p in products
    ]
    logger.info("Exporting %d products", len(rows))
    return _dataframe_to_xlsx(pd.DataFrame(rows, columns=PRODUCT_EXPORT_COLUMNS), "products", "Products")


STOCK_MOVE_EXPORT_COLUMNS = [
    "Reference", "Date", "Type", "SKU", "Change", "Before", "After",
    "From", "To", "Document", "Note",
]


@router.get("/stock-moves/export")
async def export_stock_moves(
    product_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.REPORT_EXPORT))
):
    query = db.query(models.StockMove)
    if product_id:
        query = query.filter(models.StockMove.product_id == product_id)
    moves = query.order_by(models.StockMove.moved_at, models.StockMove.id).all()

    rows = [
        {
            "Reference": m.reference,
            "Date": m.moved_at,
            "Type": m.move_type.value,
            "SKU": m.product.sku if m.product else None,
            "Change": m.quantity_change,
            "Before": m.quantity_before,
            "After": m.quantity_after,
            "From": m.from_location,
            "To": m.to_location,
            "Document": m.document_number,
            "Note": m.note,
        }
        for m in moves
    ]
    return _dataframe_to_xlsx(pd.DataFrame(rows, columns=STOCK_MOVE_EXPORT_COLUMNS), "stock_moves", "Stock Moves")


# =============================================================================
# IMPORT
# =============================================================================

def _text(value) -> Optional[str]:
    value = _to_native(value)
    if value is None:
        return None
    text = sanitize_input(str(value))
    return text or None


def _whole_number(value, field: str) -> int:
    value = _to_native(value)
    if value is None:
        return 0
    number = float(value)
    if number < 0 or number != int(number):
        raise ValueError(f"{field} must be a whole number >= 0")
    return int(number)


@router.post("/products/import")
async def import_products(
    file: UploadFile = File(...),
    sheet_name: Optional[str] = Query(None, description="Sheet to import, defaults to the first"),
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.PRODUCT_MANAGE))
):
    """
    Create products from a spreadsheet.

    Rows whose SKU already exists are skipped; import never touches the
    stock of existing products.
    """
    filename = file.filename or ""
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    file_data = _read_file_to_dataframe(content, filename)
    if not file_data:
        raise HTTPException(status_code=400, detail="File contains no data")

    if sheet_name:
        if sheet_name not in file_data:
            raise HTTPException(status_code=400, detail=f"Sheet '{sheet_name}' not found")
        df = file_data[sheet_name]
    else:
        df = next(iter(file_data.values()))

    mapping = _find_column_mapping([str(c) for c in df.columns])
    field_to_col = {field: col for col, field in mapping.items()}
    if "sku" not in field_to_col or "name" not in field_to_col:
        raise HTTPException(status_code=400, detail="File must have SKU and Name columns")

    existing_skus = {sku for (sku,) in db.query(models.Product.sku).all()}
    created: List[str] = []
    skipped: List[str] = []
    errors: List[str] = []

    def cell(row, field):
        col = field_to_col.get(field)
        return row[col] if col is not None else None

    for idx, row in df.iterrows():
        row_no = idx + 2  # header is row 1
        sku = _text(cell(row, "sku"))
        name = _text(cell(row, "name"))
        if not sku or not name:
            errors.append(f"Row {row_no}: SKU and Name are required")
            continue

        sku = sku.upper()
        if sku in existing_skus:
            skipped.append(sku)
            continue

        try:
            price = round_money(_to_native(cell(row, "price_per_unit")) or 0)
            if price < 0:
                raise ValueError("price must be >= 0")
            product = models.Product(
                sku=sku,
                name=name,
                category=_text(cell(row, "category")) or "General",
                unit_of_measure=_text(cell(row, "unit_of_measure")) or "Units",
                description=_text(cell(row, "description")),
                on_hand_quantity=_whole_number(cell(row, "on_hand_quantity"), "On hand"),
                minimum_quantity=_whole_number(cell(row, "minimum_quantity"), "Minimum"),
                price_per_unit=price,
                preferred_supplier=_text(cell(row, "preferred_supplier")),
            )
        except (ValueError, InvalidOperation) as e:
            errors.append(f"Row {row_no}: {e}")
            continue

        db.add(product)
        existing_skus.add(sku)
        created.append(sku)

    db.commit()
    logger.info("Product import by %s: %d created, %d skipped, %d errors",
                current_user.username, len(created), len(skipped), len(errors))

    return {
        "message": f"Import complete: {len(created)} created, {len(skipped)} skipped",
        "created": created,
        "skipped": skipped,
        "column_mapping_used": mapping,
        "errors": errors if errors else None,
    }


@router.get("/template")
async def get_excel_template(current_user = Depends(require_permission(Permission.PRODUCT_VIEW))):
    """Describe the accepted product spreadsheet columns."""
    return {
        "message": "Product import template",
        "supported_columns": {
            "sku": ["SKU", "Code", "Item Code", "Product Code", "Part No"],
            "name": ["Name", "Product", "Product Name", "Item Name"],
            "category": ["Category", "Type", "Group"],
            "unit_of_measure": ["Unit", "UOM", "Unit of Measure"],
            "on_hand_quantity": ["On Hand", "Quantity", "Qty", "Stock"],
            "minimum_quantity": ["Minimum", "Min Qty", "Reorder Level"],
            "price_per_unit": ["Price", "Unit Price", "Cost", "Rate"],
            "preferred_supplier": ["Supplier", "Vendor", "Preferred Supplier"],
            "description": ["Description", "Notes", "Remarks"],
        },
        "example_format": {
            "columns": ["SKU", "Name", "Category", "Unit", "On Hand", "Minimum", "Price"],
            "sample_row": ["DESK-001", "Office Desk", "Furniture", "Units", "20", "5", "149.00"]
        },
        "notes": [
            "Column names are detected automatically, order doesn't matter",
            "SKU and Name are required",
            "Existing SKUs are skipped, never updated",
            "Both .xlsx and .csv files are supported",
        ]
    }
