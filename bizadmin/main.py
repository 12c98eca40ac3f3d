import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import catalog, invoices, notifications, orders
from .config import Settings
from .container import build_container
from .database import init_db
from .errors import ErpError
from .utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def handle_erp_error(request: Request, exc: ErpError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(settings: Settings | None = None, container=None) -> FastAPI:
    settings = settings or Settings.from_env()
    container = container or build_container(settings)

    app = FastAPI(title="BizAdmin API")
    app.state.settings = settings
    app.state.container = container
    app.add_exception_handler(ErpError, handle_erp_error)

    app.include_router(orders.router)
    app.include_router(invoices.router)
    app.include_router(catalog.product_router)
    app.include_router(catalog.customer_router)
    app.include_router(notifications.router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


def main():
    configure_logging()
    settings = Settings.from_env()
    container = build_container(settings)
    init_db(container.engine, container.session_factory)
    logger.info("Starting API")
    uvicorn.run(create_app(settings, container), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
