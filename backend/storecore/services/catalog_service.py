# Overview: Catalog lookups and stock reservation used at order time.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import update

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, ProductVariant


@dataclass(frozen=True)
class CatalogItem:
    """Price/name/image as they are right now; copied onto the order line."""
    product_id: int
    variant_id: int | None
    name: str
    image_url: str | None
    size: str | None
    color: str | None
    category_id: int | None
    unit_price_paise: int
    stock: int


def lookup_item(product_id: int, variant_id: int | None = None) -> CatalogItem:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product or not product.is_active:
        raise NotFoundError(f"Product {product_id} not found")

    if variant_id is None:
        return CatalogItem(
            product_id=product.id,
            variant_id=None,
            name=product.name,
            image_url=product.image_url,
            size=None,
            color=None,
            category_id=product.category_id,
            unit_price_paise=product.price_paise,
            stock=product.stock,
        )

    variant = db.session.query(ProductVariant).filter_by(id=variant_id, product_id=product.id).first()
    if not variant or not variant.is_active:
        raise NotFoundError(f"Variant {variant_id} not found for product {product_id}")
    return CatalogItem(
        product_id=product.id,
        variant_id=variant.id,
        name=product.name,
        image_url=product.image_url,
        size=variant.size,
        color=variant.color,
        category_id=product.category_id,
        unit_price_paise=variant.price_paise if variant.price_paise is not None else product.price_paise,
        stock=variant.stock,
    )


def reserve_stock(product_id: int, variant_id: int | None, quantity: int) -> None:
    """
    Conditional atomic decrement: succeeds only while stock >= quantity.

    Two orders racing for the last unit cannot both win; the loser gets
    InsufficientStockError and its transaction rolls back.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be positive")
    model = ProductVariant if variant_id is not None else Product
    row_id = variant_id if variant_id is not None else product_id
    result = db.session.execute(
        update(model)
        .where(model.id == row_id, model.stock >= quantity)
        .values(stock=model.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = db.session.query(model.stock).filter(model.id == row_id).scalar()
        raise InsufficientStockError(
            "Insufficient stock",
            details={
                "product_id": product_id,
                "variant_id": variant_id,
                "requested": quantity,
                "available": available or 0,
            },
        )


def release_stock(product_id: int, variant_id: int | None, quantity: int) -> None:
    model = ProductVariant if variant_id is not None else Product
    row_id = variant_id if variant_id is not None else product_id
    db.session.execute(
        update(model)
        .where(model.id == row_id)
        .values(stock=model.stock + quantity)
        .execution_options(synchronize_session=False)
    )
