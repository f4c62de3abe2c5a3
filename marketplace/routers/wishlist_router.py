from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_user
from ..database import get_db
from ..errors import NotFound, ValidationError

router = APIRouter(prefix="/wishlist", tags=["Wishlist"])


@router.get("/", response_model=schemas.WishlistOut)
def view_wishlist(current_user: Dict = Depends(get_current_user), db: Session = Depends(get_db)):
    return crud.get_or_create_wishlist(db, current_user["id"])


@router.post("/", response_model=schemas.WishlistOut, status_code=status.HTTP_201_CREATED)
def add_to_wishlist(
    body: schemas.WishlistAdd,
    response: Response,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if crud.get_product(db, product_id=body.product_id) is None:
        raise NotFound("Product not found")
    wishlist = crud.get_or_create_wishlist(db, current_user["id"])
    if not crud.add_to_wishlist(db, wishlist, body.product_id):
        response.status_code = status.HTTP_200_OK
    db.refresh(wishlist)
    return wishlist


@router.delete("/", response_model=schemas.WishlistOut)
def remove_from_wishlist(
    product_id: Optional[int] = Query(None, alias="productId"),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if product_id is None:
        raise ValidationError("productId is required")
    wishlist = crud.get_or_create_wishlist(db, current_user["id"])
    crud.remove_from_wishlist(db, wishlist, product_id)
    db.refresh(wishlist)
    return wishlist
