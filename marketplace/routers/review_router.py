from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_user
from ..database import get_db
from ..errors import Forbidden, NotFound, ValidationError

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.get("/", response_model=List[schemas.ReviewOut])
def view_reviews(
    product_id: Optional[int] = Query(None, alias="productId"),
    db: Session = Depends(get_db),
):
    if product_id is None:
        raise ValidationError("productId is required")
    return crud.get_reviews(db, product_id)


@router.post("/", response_model=schemas.ReviewOut, status_code=status.HTTP_201_CREATED)
def write_review(
    body: schemas.ReviewCreate,
    response: Response,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create the caller's review of a product, or replace it if one exists."""
    if crud.get_product(db, product_id=body.product_id) is None:
        raise NotFound("Product not found")
    review, created = crud.upsert_review(db, body.product_id, current_user["id"], body.rating, body.comment)
    if not created:
        response.status_code = status.HTTP_200_OK
    return review


@router.delete("/", response_model=schemas.MessageOut)
def delete_review(
    review_id: Optional[int] = Query(None, alias="id"),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if review_id is None:
        raise ValidationError("Review id is required")
    review = crud.get_review(db, review_id)
    if review is None:
        raise NotFound("Review not found")
    if review.user_id != current_user["id"] and current_user["role"] != "ADMIN":
        raise Forbidden("Access denied")
    crud.delete_review(db, review)
    return {"message": "Review deleted"}
