"""Product catalog reads, the administrative add form, and sample data seeding."""

from __future__ import annotations

from typing import List, Optional

import structlog

from database import DocumentStore
from errors import InvalidImageUrlError
from schemas import Product, ProductCreate

logger = structlog.get_logger(__name__)

PRODUCTS = "products"

SAMPLE_PRODUCTS = [
    {
        "title": "Classic Tee",
        "description": "Soft cotton unisex t-shirt",
        "price": 19.99,
        "stock": 120,
        "category": "apparel",
        "image": "https://images.unsplash.com/photo-1520975916090-3105956dac38?q=80&w=800&auto=format&fit=crop",
        "rating": {"rate": 4.6, "count": 212},
    },
    {
        "title": "Minimal Backpack",
        "description": "Lightweight everyday backpack",
        "price": 49.0,
        "stock": 35,
        "category": "bags",
        "image": "https://images.unsplash.com/photo-1519681393784-d120267933ba?q=80&w=800&auto=format&fit=crop",
        "rating": {"rate": 4.4, "count": 87},
    },
    {
        "title": "Wireless Earbuds",
        "description": "Noise-isolating Bluetooth earbuds",
        "price": 59.99,
        "stock": 60,
        "category": "electronics",
        "image": "https://images.unsplash.com/photo-1518448059646-51f7ebf92613?q=80&w=800&auto=format&fit=crop",
        "rating": {"rate": 4.2, "count": 340},
    },
    {
        "title": "Ceramic Mug",
        "description": "12oz matte finish mug",
        "price": 12.5,
        "stock": 200,
        "category": "home",
        "image": "https://images.unsplash.com/photo-1525385133512-2f3bdd039054?q=80&w=800&auto=format&fit=crop",
        "rating": {"rate": 4.8, "count": 56},
    },
]


def is_valid_image_url(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


async def list_products(store: DocumentStore, category: Optional[str] = None, limit: int = 50) -> List[Product]:
    filt = {"category": category} if category else {}
    docs = await store.get_documents(PRODUCTS, filt, limit=limit)
    return [Product.model_validate(d) for d in docs]


async def get_product(store: DocumentStore, product_id: str) -> Optional[Product]:
    doc = await store.get_document(PRODUCTS, product_id)
    return Product.model_validate(doc) if doc is not None else None


async def list_categories(store: DocumentStore) -> List[str]:
    return sorted(c for c in await store.distinct(PRODUCTS, "category") if c)


async def add_product(store: DocumentStore, form: ProductCreate) -> Product:
    if not is_valid_image_url(form.image):
        raise InvalidImageUrlError(form.image)
    data = form.to_document()
    product_id = await store.create_document(PRODUCTS, data)
    logger.info("product_added", product_id=product_id, title=form.title)
    return Product.model_validate({**data, "id": product_id})


async def seed_products(store: DocumentStore, force: bool = False) -> int:
    count = await store.count_documents(PRODUCTS)
    if count > 0 and not force:
        return 0
    if force:
        await store.delete_documents(PRODUCTS)
    for sample in SAMPLE_PRODUCTS:
        await store.create_document(PRODUCTS, dict(sample))
    logger.info("products_seeded", inserted=len(SAMPLE_PRODUCTS), force=force)
    return len(SAMPLE_PRODUCTS)
