from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.application.catalog import CatalogService
from storefront.application.errors import ProductNotFound
from storefront.application.schemas import ProductRead
from storefront.infrastructure.db import get_db

router = APIRouter(prefix="/products", tags=["products"])

@router.get("/", response_model=list[ProductRead])
def list_products(db: Session = Depends(get_db)):
    return CatalogService(db).list()

@router.get("/{product_id}", response_model=ProductRead)
def get_product(product_id: str, db: Session = Depends(get_db)):
    product = CatalogService(db).get(product_id)
    if not product or not product.is_active:
        raise ProductNotFound(product_id)
    return product
