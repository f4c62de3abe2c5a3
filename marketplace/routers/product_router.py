from decimal import Decimal
from typing import Dict, Optional, Union

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_seller, get_current_user
from ..database import get_db
from ..errors import Conflict, Forbidden, NotFound, ValidationError

router = APIRouter(prefix="/products", tags=["Products"])

_PRODUCT_ERRORS = {
    "name_required": "Product name is required",
    "category_not_found": "Category not found",
}


def _detail(db: Session, db_product) -> schemas.ProductDetail:
    base = schemas.ProductOut.model_validate(db_product)
    reviews = [schemas.ReviewOut.model_validate(r) for r in crud.get_reviews(db, db_product.id)]
    return schemas.ProductDetail(**base.model_dump(), reviews=reviews)


def _owned_product(db: Session, product_id: Optional[int], current_user: Dict):
    if product_id is None:
        raise ValidationError("Product id is required")
    db_product = crud.get_product(db, product_id=product_id)
    if db_product is None:
        raise NotFound("Product not found")
    if db_product.seller_id != current_user["id"] and current_user["role"] != "ADMIN":
        raise Forbidden("Access denied")
    return db_product


@router.get("/", response_model=Union[schemas.ProductDetail, schemas.ProductListResponse])
def view_products(
    product_id: Optional[int] = Query(None, alias="id"),
    slug: Optional[str] = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    search: Optional[str] = Query(None, description="Search in name or description"),
    category: Optional[str] = Query(None, description="Category slug"),
    category_id: Optional[int] = Query(None, alias="categoryId"),
    seller_id: Optional[int] = Query(None, alias="sellerId"),
    min_price: Optional[Decimal] = Query(None, alias="minPrice"),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice"),
    sort: Optional[str] = Query(None, description="price_asc, price_desc, newest or name"),
    db: Session = Depends(get_db),
):
    if product_id is not None or slug:
        db_product = crud.get_product(db, product_id=product_id, slug=slug)
        if db_product is None:
            raise NotFound("Product not found")
        return _detail(db, db_product)

    page, limit, skip = crud.page_window(page, limit)
    products, total = crud.get_products(
        db,
        skip=skip,
        limit=limit,
        search=search,
        category_slug=category,
        category_id=category_id,
        seller_id=seller_id,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
    )
    return {
        "products": [schemas.ProductOut.model_validate(p) for p in products],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": (total + limit - 1) // limit,
    }


@router.post("/", response_model=schemas.ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(
    body: schemas.ProductCreate,
    current_user: Dict = Depends(get_current_seller),
    db: Session = Depends(get_db),
):
    try:
        return crud.create_product(db, current_user["id"], body.model_dump())
    except ValueError as e:
        raise ValidationError(_PRODUCT_ERRORS.get(str(e), str(e)))
    except IntegrityError:
        db.rollback()
        raise Conflict("Product slug already exists")


@router.put("/", response_model=schemas.ProductOut)
def update_product(
    body: schemas.ProductUpdate,
    product_id: Optional[int] = Query(None, alias="id"),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    db_product = _owned_product(db, product_id, current_user)
    try:
        return crud.update_product(db, db_product, body.model_dump(exclude_unset=True))
    except ValueError as e:
        raise ValidationError(_PRODUCT_ERRORS.get(str(e), str(e)))


@router.delete("/", response_model=schemas.MessageOut)
def delete_product(
    product_id: Optional[int] = Query(None, alias="id"),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    db_product = _owned_product(db, product_id, current_user)
    crud.delete_product(db, db_product)
    return {"message": "Product deleted"}
