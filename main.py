import os
import time
import logging
from typing import List, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import get_settings
from database import MongoStore, ensure_indexes, get_collection, get_db, ping
from errors import MarketError, ValidationError
from registry import ListingRegistry
from carts import CartAggregator
from schemas import (
    AddCartItemBody,
    Cart,
    CartView,
    CreatedListing,
    DeleteBody,
    Listing,
    ListingCreate,
    ListingUpdate,
    MarkSoldBody,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="CampusKart API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_api_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    if request.url.path.startswith("/api"):
        duration = (time.perf_counter() - start) * 1000
        logger.info("%s %s %s in %dms", request.method, request.url.path, response.status_code, duration)
    return response


@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    body = exc.to_dict()
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    err = ValidationError.from_pydantic(exc)
    return JSONResponse(status_code=err.http_status, content=err.to_dict())


# Dependencies
def get_registry() -> ListingRegistry:
    return ListingRegistry(
        MongoStore(get_collection("listing")),
        allow_deletion=settings.enable_deletion,
        degrade_reads=settings.degrade_reads,
    )


def get_carts() -> CartAggregator:
    return CartAggregator(MongoStore(get_collection("cart")))


# Product Endpoints
@app.get("/api/products", response_model=List[Listing])
def list_products(category: Optional[str] = None, registry: ListingRegistry = Depends(get_registry)):
    return registry.list(category)


@app.get("/api/products/delete/{product_id}")
def delete_product_link(
    product_id: str,
    secret_key: Optional[str] = Query(None, alias="secretKey"),
    registry: ListingRegistry = Depends(get_registry),
):
    registry.delete(product_id, secret_key)
    return {"message": "Product deleted"}


@app.get("/api/products/{product_id}", response_model=Listing)
def get_product(product_id: str, registry: ListingRegistry = Depends(get_registry)):
    return registry.get_by_id(product_id)


@app.post("/api/products", status_code=201, response_model=CreatedListing)
def create_product(body: ListingCreate, registry: ListingRegistry = Depends(get_registry)):
    return registry.create(body)


@app.patch("/api/products/{product_id}", response_model=Listing)
def update_product(product_id: str, body: ListingUpdate, registry: ListingRegistry = Depends(get_registry)):
    return registry.update(product_id, body)


@app.post("/api/products/{product_id}/mark-sold")
def mark_product_sold(product_id: str, body: MarkSoldBody, registry: ListingRegistry = Depends(get_registry)):
    product = registry.mark_sold(product_id, body.secret_key)
    return {"message": "Product marked as sold", "product": product.model_dump(mode="json", by_alias=True)}


@app.delete("/api/products/{product_id}")
def delete_product(
    product_id: str,
    body: Optional[DeleteBody] = Body(None),
    secret_key: Optional[str] = Query(None, alias="secretKey"),
    registry: ListingRegistry = Depends(get_registry),
):
    if body is not None and body.secret_key:
        secret_key = body.secret_key
    registry.delete(product_id, secret_key)
    return {"message": "Product deleted"}


# Cart Endpoints
@app.get("/api/cart/{session_id}", response_model=CartView)
def get_cart(
    session_id: str,
    carts: CartAggregator = Depends(get_carts),
    registry: ListingRegistry = Depends(get_registry),
):
    cart = carts.get_or_create(session_id)
    return carts.resolve(cart, registry.get_by_id)


@app.post("/api/cart/{session_id}", status_code=201, response_model=Cart)
def add_to_cart(session_id: str, body: AddCartItemBody, carts: CartAggregator = Depends(get_carts)):
    return carts.add_item(session_id, body.listing_id)


@app.delete("/api/cart/{session_id}/{product_id}", response_model=Cart)
def remove_from_cart(session_id: str, product_id: str, carts: CartAggregator = Depends(get_carts)):
    return carts.remove_item(session_id, product_id)


@app.get("/")
def read_root():
    return {"message": "CampusKart backend running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": settings.database_name,
        "connection_status": "Not Connected",
        "collections": []
    }
    if not ping():
        return response
    response["connection_status"] = "Connected"
    response["database"] = "✅ Available"
    try:
        response["collections"] = get_db().list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        logger.warning("Listing collections failed: %s", e)
        response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    ensure_indexes()
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
