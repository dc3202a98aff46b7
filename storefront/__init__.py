import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from storefront.core.config import Config
from storefront.db.database import AsyncSessionLocal, init_db
from storefront.exceptions import (
    create_exception_handler,
    persistence_exception_handler,
    AdminKeyRequiredException,
    InvalidQuantityError,
    PaymentGatewayError,
)
from storefront.routers.cart import router as cart_router, admin_router as cart_admin_router
from storefront.routers.checkout import router as checkout_router
from storefront.routers.payments import router as payments_router
from storefront.routers.discounts import router as discounts_router
from storefront.routers.shipping import router as shipping_router, admin_router as shipping_admin_router
from storefront.routers.orders import router as orders_router
from storefront.routers.reviews import router as reviews_router, admin_router as reviews_admin_router
from storefront.services.cleanup_service import run_cart_cleanup
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

api_version = "v1"
swagger_docs_url = f"/api/{api_version}/docs"
redoc_docs_url = f"/api/{api_version}/redoc"
openapi_url = f"/api/{api_version}/openapi.json"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=Config.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await init_db()

    cleanup_task = asyncio.create_task(run_cart_cleanup(AsyncSessionLocal))
    logger.info("Storefront API started")
    yield

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    logger.info("Storefront API stopped")


app = FastAPI(
    docs_url=swagger_docs_url,
    redoc_url=redoc_docs_url,
    openapi_url=openapi_url,
    title="Storefront API",
    description="Guest checkout storefront: carts, discount codes, shipping and orders.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        'http://localhost',
        'http://localhost:3000',
        Config.APP_BASE_URL,
    ],
    allow_credentials=True,
    allow_methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE'],
    allow_headers=["*"],
)

# Register endpoints
app.include_router(cart_router, prefix=f'/api/{api_version}/cart', tags=["Cart"])
app.include_router(checkout_router, prefix=f'/api/{api_version}/checkout', tags=["Checkout"])
app.include_router(payments_router, prefix=f'/api/{api_version}/payments', tags=["Payments"])
app.include_router(shipping_router, prefix=f'/api/{api_version}/shipping', tags=["Shipping"])
app.include_router(reviews_router, prefix=f'/api/{api_version}/reviews', tags=["Reviews"])
app.include_router(cart_admin_router, prefix=f'/api/{api_version}/admin/carts', tags=["Admin"])
app.include_router(discounts_router, prefix=f'/api/{api_version}/admin/discounts', tags=["Admin"])
app.include_router(shipping_admin_router, prefix=f'/api/{api_version}/admin/shipping', tags=["Admin"])
app.include_router(orders_router, prefix=f'/api/{api_version}/admin/orders', tags=["Admin"])
app.include_router(reviews_admin_router, prefix=f'/api/{api_version}/admin/reviews', tags=["Admin"])


# Add a root endpoint for health check
@app.get("/")
async def root():
    return {
        "message": "Storefront API",
        "version": "1.0.0",
        "docs": f"{Config.APP_BASE_URL}{swagger_docs_url}",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


# Register custom exceptions
app.add_exception_handler(AdminKeyRequiredException, create_exception_handler(403, "A valid X-Admin-Key header is required."))
app.add_exception_handler(InvalidQuantityError, create_exception_handler(400, "Invalid quantity."))
app.add_exception_handler(PaymentGatewayError, create_exception_handler(502, "The payment provider is unavailable. Please try again later."))
app.add_exception_handler(SQLAlchemyError, persistence_exception_handler)
