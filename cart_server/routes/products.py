"""Product API routes"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Query

from ..models.product import Product
from ..database.products import product_db

router = APIRouter(prefix="/products", tags=["Products"])


@router.get("", response_model=list[Product])
async def list_products(
    ids: Optional[str] = Query(None, description="Comma-separated product ids"),
):
    """
    List products.

    With ids, only the named products are returned; unknown ids are
    skipped so callers can detect removed products.
    """
    if ids is None:
        return product_db.get_products()
    wanted = [pid.strip() for pid in ids.split(",") if pid.strip()]
    return product_db.get_products(wanted)


@router.get("/{product_id}", response_model=Product)
async def get_product(product_id: str):
    """Get a product by ID"""
    product = product_db.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product
