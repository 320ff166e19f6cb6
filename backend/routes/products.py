"""
Catalog endpoints (public).
"""
from fastapi import APIRouter, Depends

from domain.errors import NotFoundError
from domain.responses import success_response
from middleware.rate_limit import LENIENT, rate_limit
from services import catalog_service

router = APIRouter(prefix="/products", tags=["products"])


@router.get("")
async def list_products(_rate=Depends(rate_limit(LENIENT))):
    return success_response([p.to_dict() for p in catalog_service.get_all_products()])


@router.get("/{product_id}")
async def get_product(product_id: str, _rate=Depends(rate_limit(LENIENT))):
    product = catalog_service.get_product(product_id)
    if product is None:
        raise NotFoundError("Product", product_id)
    return success_response(product.to_dict())
