from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from .checkout_sweeper import start_checkout_sweeper
from .config import CHECKOUT_SWEEP_ENABLED, CORS_ORIGINS
from .database import engine
from .errors import MarketplaceError
from .log import configure_logging
from .models import Base
from .routers import (
    auth_router,
    cart_router,
    category_router,
    checkout_router,
    order_router,
    product_router,
    review_router,
    user_router,
    wishlist_router,
)

configure_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(
    title="Marketplace Service",
    description="Multi-tenant marketplace: catalog, carts and the order lifecycle",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create database tables
Base.metadata.create_all(bind=engine)

# Include routers
app.include_router(auth_router.router)
app.include_router(user_router.router)
app.include_router(category_router.router)
app.include_router(product_router.router)
app.include_router(review_router.router)
app.include_router(cart_router.router)
app.include_router(wishlist_router.router)
app.include_router(order_router.router)
app.include_router(checkout_router.router)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.error, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.error, "detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    detail = f"{location}: {message}" if location else message
    return JSONResponse(status_code=400, content={"error": "ValidationError", "detail": detail})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "InternalError", "detail": "Internal server error"})


@app.on_event("startup")
def _startup() -> None:
    if CHECKOUT_SWEEP_ENABLED:
        start_checkout_sweeper()


@app.get("/")
def root():
    return {
        "service": "Marketplace Service",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "service": "marketplace-service"
    }
