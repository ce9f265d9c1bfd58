"""
Sky Store - Storefront API
FastAPI backend with JSON file storage and Telegram order notifications
"""

import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from notifier import NotificationQueue, NullNotifier, TelegramNotifier
from orders import place_order
from schemas import Order, OrderCreate, Product, id_key, normalize
from storage import StorageError, Store
from uploads import URL_PREFIX, UploadError, discard_image, save_image

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(ensure_ascii=False)
    ]
)
logger = structlog.get_logger()

VERSION = "1.0.0"


def parse_int(value) -> Optional[int]:
    """Leading integer of a form value ("12px" -> 12), None if there isn't one."""
    if value is None:
        return None
    match = re.match(r"\s*([-+]?\d+)", str(value))
    return int(match.group(1)) if match else None


def error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def build_notifier(settings: Settings):
    if not settings.notifier_enabled:
        logger.warning("notifier_disabled", reason="BOT_TOKEN or CHAT_ID not set")
        return NullNotifier()
    return TelegramNotifier(settings.bot_token, settings.chat_id)


def create_app(settings: Optional[Settings] = None, notifier=None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        app.state.store.ensure()
        settings.uploads_path.mkdir(parents=True, exist_ok=True)
        queue = NotificationQueue(
            notifier or build_notifier(settings),
            max_attempts=settings.notify_max_attempts,
            backoff_base=settings.notify_backoff_base,
        )
        queue.start()
        app.state.notifications = queue
        logger.info(
            "application_startup",
            version=VERSION,
            data_dir=str(settings.data_dir),
            uploads_dir=str(settings.uploads_path),
        )
        yield
        await queue.stop()
        logger.info("application_shutdown")

    app = FastAPI(
        title=f"{settings.store_name} API",
        description="Storefront catalog, slider and order intake",
        version=VERSION,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.store = Store(settings.data_dir)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
        max_age=600,
    )

    # Security middleware
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    app.mount(URL_PREFIX, StaticFiles(directory=settings.uploads_path, check_dir=False), name="uploads")

    register_routes(app)
    register_error_handlers(app)
    return app


def register_routes(app: FastAPI):
    # Public routes

    @app.get("/")
    async def index(request: Request):
        page = Path(request.app.state.settings.static_dir) / "index.html"
        if not page.is_file():
            return error(404, "Not found")
        return FileResponse(page)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint for monitoring"""
        store = request.app.state.store
        return {
            "status": "healthy",
            "products_count": len(await store.products.all()),
            "orders_count": len(await store.orders.all()),
            "slider_count": len(await store.slider.all()),
        }

    @app.get("/api/products")
    async def list_products(request: Request):
        return normalize(Product, await request.app.state.store.products.all())

    @app.get("/api/slider")
    async def list_slider(request: Request):
        return await request.app.state.store.slider.all()

    @app.post("/api/order")
    async def create_order(payload: OrderCreate, request: Request):
        """
        Place an order: decrement stock, append to the order log and queue
        the Telegram notification. Notification problems never fail the order.
        """
        missing = payload.missing_fields()
        if missing:
            logger.warning("order_rejected_missing_fields", fields=missing)
            return error(400, "missing_required_fields", fields=missing)

        settings = request.app.state.settings
        try:
            order, message = await place_order(
                request.app.state.store,
                payload,
                tz_name=settings.timezone,
                store_name=settings.store_name,
                country_code=settings.country_code,
            )
        except StorageError as e:
            logger.error("order_failed", error=str(e))
            return error(500, "Could not save the order, please try again")

        request.app.state.notifications.enqueue(message, order_id=order.id)
        return {"success": True, "order": order.model_dump()}

    # Admin routes

    @app.get("/api/admin/orders")
    async def list_orders(request: Request):
        orders = normalize(Order, await request.app.state.store.orders.all())
        orders.reverse()
        return orders

    @app.post("/api/admin/products")
    async def create_product(
        request: Request,
        name: Optional[str] = Form(None),
        price: Optional[str] = Form(None),
        discount: Optional[str] = Form(None),
        stock: Optional[str] = Form(None),
        image: Optional[UploadFile] = File(None),
    ):
        settings = request.app.state.settings
        if image is None or not image.filename:
            return error(400, "No image uploaded")
        if not (name and name.strip()) or not (price and price.strip()):
            return error(400, "Missing name or price")

        image_path = await save_image(image, settings.uploads_path, settings.max_upload_bytes)

        store = request.app.state.store
        product = Product(
            id=store.ids.next(),
            name=name.strip(),
            price=parse_int(price) or 0,
            discount=max(parse_int(discount) or 0, 0),
            stock=max(parse_int(stock) or 0, 0),
            imagePath=image_path,
        )
        try:
            async with store.products.transaction() as products:
                products.append(product.model_dump())
        except StorageError:
            discard_image(image_path, settings.uploads_path)
            raise

        logger.info("product_created", product_id=product.id, name=product.name, stock=product.stock)
        return {"success": True, "product": product.model_dump()}

    @app.delete("/api/admin/products/{product_id}")
    async def delete_product(product_id: str, request: Request):
        async with request.app.state.store.products.transaction() as products:
            before = len(products)
            key = id_key(product_id)
            products[:] = [p for p in products if id_key(p.get("id")) != key]
            removed = before - len(products)
        logger.info("product_deleted", product_id=product_id, removed=removed)
        return {"success": True}

    @app.post("/api/admin/slider")
    async def add_slider_image(request: Request, image: Optional[UploadFile] = File(None)):
        settings = request.app.state.settings
        image_path = await save_image(image, settings.uploads_path, settings.max_upload_bytes)
        try:
            async with request.app.state.store.slider.transaction() as slider:
                slider.append(image_path)
        except StorageError:
            discard_image(image_path, settings.uploads_path)
            raise
        logger.info("slider_image_added", image_path=image_path)
        return {"success": True, "imagePath": image_path}

    @app.delete("/api/admin/slider/{index}")
    async def delete_slider_image(index: str, request: Request):
        position = parse_int(index)
        async with request.app.state.store.slider.transaction() as slider:
            if position is not None and 0 <= position < len(slider):
                removed = slider.pop(position)
                logger.info("slider_image_removed", index=position, image_path=removed)
        return {"success": True}


def register_error_handlers(app: FastAPI):
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err["loc"] if p != "body") for err in exc.errors()]
        logger.warning("request_invalid", path=request.url.path, fields=fields)
        return error(400, "invalid_fields", fields=fields)

    @app.exception_handler(UploadError)
    async def upload_exception_handler(request: Request, exc: UploadError):
        logger.warning("upload_rejected", path=request.url.path, reason=str(exc))
        return error(400, str(exc))

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request: Request, exc: StorageError):
        logger.error("storage_error", path=request.url.path, error=str(exc))
        return error(500, "Storage unavailable, please try again later")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error(404, "Not found")
        return error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("unhandled_exception", error=str(exc), path=request.url.path)
        return error(500, "Internal server error. Please try again later.")


app = create_app()


def main():
    settings = get_settings()
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        workers=1,
        log_level="info"
    )


if __name__ == "__main__":
    main()
