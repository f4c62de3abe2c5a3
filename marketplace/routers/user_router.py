from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_user, get_optional_user, get_password_hash, verify_password
from ..database import get_db
from ..errors import NotFound, Unauthenticated, ValidationError
from ..models import Product, Review

router = APIRouter(prefix="/users", tags=["Users"])


def _profile(db: Session, user, is_self: bool) -> schemas.ProfileOut:
    profile = schemas.ProfileOut(
        id=user.id,
        name=user.name,
        role=user.role,
        avatar=user.avatar,
        bio=user.bio,
        company=user.company,
        created_at=user.created_at,
        product_count=db.query(Product).filter(Product.seller_id == user.id).count(),
        review_count=db.query(Review).filter(Review.user_id == user.id).count(),
    )
    if is_self:
        profile.email = user.email
        profile.phone = user.phone
        profile.addresses = [schemas.AddressOut.model_validate(a) for a in user.addresses]
    return profile


@router.get("/", response_model=schemas.ProfileOut, response_model_exclude_none=True)
def view_profile(
    user_id: Optional[int] = Query(None, alias="id", description="Omit for the caller's own profile"),
    current_user: Optional[Dict] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Public profile of any user; contact details only on your own."""
    if user_id is None:
        if current_user is None:
            raise Unauthenticated("Authentication required")
        user_id = current_user["id"]

    user = crud.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return _profile(db, user, is_self=current_user is not None and current_user["id"] == user.id)


@router.put("/", response_model=schemas.ProfileOut)
def update_profile(
    body: schemas.ProfileUpdate,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = crud.get_user(db, current_user["id"])
    if user is None:
        raise NotFound("User not found")

    update_data = body.model_dump(exclude_unset=True)
    current_password = update_data.pop("current_password", None)
    new_password = update_data.pop("new_password", None)
    if new_password:
        if not current_password:
            raise ValidationError("Current password is required to set a new password")
        if not verify_password(current_password, user.hashed_password):
            raise Unauthenticated("Current password is incorrect")
        update_data["hashed_password"] = get_password_hash(new_password)
    if update_data.get("name") is None:
        update_data.pop("name", None)

    user = crud.update_user(db, user, update_data)
    return _profile(db, user, is_self=True)


@router.post("/addresses", response_model=schemas.AddressOut, status_code=status.HTTP_201_CREATED)
def add_address(
    body: schemas.AddressCreate,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    address_data = body.model_dump()
    address_data["label"] = address_data.get("label") or "Home"
    return crud.add_address(db, current_user["id"], address_data)


@router.delete("/addresses/{address_id}", response_model=schemas.MessageOut)
def delete_address(
    address_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not crud.delete_address(db, current_user["id"], address_id):
        raise NotFound("Address not found")
    return {"message": "Address deleted"}
