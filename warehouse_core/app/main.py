import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import create_db_and_tables
from .logging_config import setup_logging
from .auth import router as auth_router
from .users import router as users_router
from .contacts import router as contacts_router
from .warehouses import router as warehouses_router
from .products import router as products_router
from .excel import router as excel_router
from .routers.receipts import router as receipts_router
from .routers.deliveries import router as deliveries_router
from .routers.stock_moves import router as stock_moves_router
from .routers.manufacturing import router as manufacturing_router, operations_router
from .services.inventory_service import (
    InventoryError, InsufficientStockError, InvalidOperationError,
    InconsistentInputError, PersistenceConflictError
)

logger = logging.getLogger(__name__)

# Most specific first; anything else derived from InventoryError is a 400
DOMAIN_ERROR_STATUS = (
    (InsufficientStockError, 409),
    (PersistenceConflictError, 409),
    (InconsistentInputError, 422),
    (InvalidOperationError, 400),
)


def get_cors_origins():
    """Get CORS origins from environment or use defaults for development"""
    origins_env = os.getenv("CORS_ORIGINS", "")
    if origins_env:
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ]


def create_app() -> FastAPI:
    setup_logging()

    app = FastAPI(
        title="Warehouse Core",
        description="Inventory backend: products, receipts, delivery orders, manufacturing and the stock ledger",
        version="1.0.0"
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InventoryError)
    async def _inventory_error(request: Request, exc: InventoryError):
        status_code = next(
            (code for exc_type, code in DOMAIN_ERROR_STATUS if isinstance(exc, exc_type)),
            400
        )
        logger.info("%s %s -> %d: %s", request.method, request.url.path, status_code, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(contacts_router)
    app.include_router(warehouses_router)
    app.include_router(products_router)
    app.include_router(excel_router)
    app.include_router(receipts_router)
    app.include_router(deliveries_router)
    app.include_router(stock_moves_router)
    app.include_router(manufacturing_router)
    app.include_router(operations_router)

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def on_startup():
        logger.info("Creating database tables at startup...")
        create_db_and_tables()
        logger.info("Database ready.")

    return app


app = create_app()


def run():
    """Serve the API with uvicorn (HOST / PORT / RELOAD from the environment)"""
    import uvicorn

    uvicorn.run(
        "warehouse_core.app.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "").lower() in ("1", "true", "yes"),
    )


if __name__ == "__main__":
    run()
