from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import products
from auth import ProfileStore
from config import Settings, configure_logging
from database import DocumentStore, create_store
from errors import StorefrontError
from identity import IdentityProvider
from orders import OrderQuery, checkout_defaults, submit_order, summarize
from schemas import (
    AuthState,
    CartAddRequest,
    CartQuantityRequest,
    CartView,
    CheckoutForm,
    LoginRequest,
    Order,
    OrderSummary,
    Product,
    ProductCreate,
    SignupRequest,
)
from sessions import ClientSession, SessionRegistry

logger = structlog.get_logger(__name__)


class SeedRequest(BaseModel):
    force: bool = False


@dataclass
class Storefront:
    settings: Settings
    store: DocumentStore
    identity: IdentityProvider
    profiles: ProfileStore
    sessions: SessionRegistry
    orders: OrderQuery


def build_storefront(settings: Settings, store: Optional[DocumentStore] = None) -> Storefront:
    store = store or create_store(settings.database_url, settings.database_name)
    identity = IdentityProvider(store, hash_iterations=settings.password_hash_iterations)
    profiles = ProfileStore()
    return Storefront(
        settings=settings,
        store=store,
        identity=identity,
        profiles=profiles,
        sessions=SessionRegistry(
            store,
            identity,
            profiles,
            idle_timeout=settings.session_idle_seconds,
            max_sessions=settings.max_sessions,
        ),
        orders=OrderQuery(
            store,
            list_stale_after=settings.order_list_stale_seconds,
            order_stale_after=settings.order_stale_seconds,
            cache_size=settings.order_cache_size,
        ),
    )


def get_storefront(request: Request) -> Storefront:
    return request.app.state.storefront


async def get_session(
    session_id: str = Query(..., min_length=1),
    storefront: Storefront = Depends(get_storefront),
) -> ClientSession:
    return await storefront.sessions.get(session_id)


async def get_product_or_404(storefront: Storefront, product_id: str) -> Product:
    product = await products.get_product(storefront.store, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def cart_view(session: ClientSession) -> CartView:
    cart = session.cart
    return CartView(items=list(cart.items), item_count=cart.item_count, total=cart.total)


async def storefront_error_handler(request: Request, exc: StorefrontError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        message=exc.message,
        **exc.details,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(settings: Optional[Settings] = None, store: Optional[DocumentStore] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(log_level=settings.log_level, json_format=settings.log_json)
    storefront = build_storefront(settings, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        storefront.sessions.close_all()

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.storefront = storefront

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StorefrontError, storefront_error_handler)

    @app.get("/")
    def read_root():
        return {"message": "Storefront Backend is running"}

    @app.get("/test")
    async def test_database():
        """Test endpoint to check if the document store is available and accessible"""
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_kind": storefront.store.kind,
            "database_name": storefront.store.name,
            "connection_status": "Not Connected",
            "collections": [],
        }
        try:
            response["collections"] = (await storefront.store.list_collection_names())[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except StorefrontError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e.details.get('error', e.message))[:50]}"
        response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
        return response

    # Catalog

    @app.get("/api/products", response_model=List[Product])
    async def list_products(
        category: Optional[str] = None,
        limit: int = Query(50, ge=1, le=100),
        storefront: Storefront = Depends(get_storefront),
    ):
        return await products.list_products(storefront.store, category=category, limit=limit)

    @app.get("/api/products/{product_id}", response_model=Product)
    async def get_product(product_id: str, storefront: Storefront = Depends(get_storefront)):
        return await get_product_or_404(storefront, product_id)

    @app.get("/api/categories", response_model=List[str])
    async def list_categories(storefront: Storefront = Depends(get_storefront)):
        return await products.list_categories(storefront.store)

    @app.post("/api/products", response_model=Product, status_code=201)
    async def add_product(form: ProductCreate, storefront: Storefront = Depends(get_storefront)):
        return await products.add_product(storefront.store, form)

    @app.post("/api/products/seed")
    async def seed_products(payload: SeedRequest, storefront: Storefront = Depends(get_storefront)):
        inserted = await products.seed_products(storefront.store, force=payload.force)
        if inserted == 0:
            return {"inserted": 0, "message": "Products already exist"}
        return {"inserted": inserted}

    # Cart

    @app.get("/api/cart", response_model=CartView)
    async def get_cart(session: ClientSession = Depends(get_session)):
        return cart_view(session)

    @app.post("/api/cart/items", response_model=CartView)
    async def add_to_cart(
        item: CartAddRequest,
        session: ClientSession = Depends(get_session),
        storefront: Storefront = Depends(get_storefront),
    ):
        product = await get_product_or_404(storefront, item.product_id)
        session.cart.add(product, item.quantity)
        return cart_view(session)

    @app.put("/api/cart/items/{product_id}", response_model=CartView)
    async def set_cart_quantity(
        product_id: str,
        payload: CartQuantityRequest,
        session: ClientSession = Depends(get_session),
    ):
        session.cart.set_quantity(product_id, payload.quantity)
        return cart_view(session)

    @app.delete("/api/cart/items/{product_id}", response_model=CartView)
    async def remove_from_cart(product_id: str, session: ClientSession = Depends(get_session)):
        session.cart.remove(product_id)
        return cart_view(session)

    @app.delete("/api/cart", response_model=CartView)
    async def clear_cart(session: ClientSession = Depends(get_session)):
        session.cart.clear()
        return cart_view(session)

    # Auth

    @app.post("/api/auth/signup", response_model=AuthState, status_code=201)
    async def signup(form: SignupRequest, session: ClientSession = Depends(get_session)):
        await session.auth.signup(form)
        return session.auth.state

    @app.post("/api/auth/login", response_model=AuthState)
    async def login(form: LoginRequest, session: ClientSession = Depends(get_session)):
        await session.auth.login(form.email, form.password)
        return session.auth.state

    @app.post("/api/auth/logout", response_model=AuthState)
    async def logout(session: ClientSession = Depends(get_session)):
        await session.auth.logout()
        return session.auth.state

    @app.get("/api/auth/me", response_model=AuthState)
    async def me(session: ClientSession = Depends(get_session)):
        return session.auth.state

    @app.delete("/api/session", status_code=204)
    def end_session(session_id: str = Query(..., min_length=1), storefront: Storefront = Depends(get_storefront)):
        storefront.sessions.end(session_id)

    # Checkout / orders

    @app.get("/api/checkout/form")
    async def checkout_form(session: ClientSession = Depends(get_session)):
        return checkout_defaults(session.auth.user)

    @app.post("/api/checkout", response_model=Order, status_code=201)
    async def checkout(
        form: CheckoutForm,
        session: ClientSession = Depends(get_session),
        storefront: Storefront = Depends(get_storefront),
    ):
        return await submit_order(storefront.store, session.cart, session.auth.user, form)

    @app.get("/api/orders", response_model=List[Order])
    async def list_orders(
        session: ClientSession = Depends(get_session),
        storefront: Storefront = Depends(get_storefront),
    ):
        return await storefront.orders.list_for_user(session.auth.require_user().id)

    @app.get("/api/orders/summary", response_model=List[OrderSummary])
    async def list_order_summaries(
        session: ClientSession = Depends(get_session),
        storefront: Storefront = Depends(get_storefront),
    ):
        orders = await storefront.orders.list_for_user(session.auth.require_user().id)
        return [summarize(o) for o in orders]

    @app.get("/api/orders/{order_id}", response_model=Optional[Order])
    async def get_order(
        order_id: str,
        session: ClientSession = Depends(get_session),
        storefront: Storefront = Depends(get_storefront),
    ):
        return await storefront.orders.get_order_for_user(order_id, session.auth.require_user().id)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.storefront.settings.port)
