from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_user
from ..database import get_db
from ..errors import InsufficientStock, NotFound

router = APIRouter(prefix="/cart", tags=["Cart"])


def _in_stock_product(db: Session, product_id: int, quantity: int):
    product = crud.get_product(db, product_id=product_id)
    if product is None:
        raise NotFound("Product not found")
    if quantity > product.stock:
        raise InsufficientStock(product.id, product.name, product.stock, quantity)
    return product


@router.get("/", response_model=schemas.CartOut)
def view_cart(current_user: Dict = Depends(get_current_user), db: Session = Depends(get_db)):
    return crud.get_or_create_cart(db, current_user["id"])


@router.post("/", response_model=schemas.CartOut)
def add_to_cart(
    body: schemas.CartItemAdd,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _in_stock_product(db, body.product_id, body.quantity)
    cart = crud.get_or_create_cart(db, current_user["id"])
    crud.add_to_cart(db, cart, body.product_id, body.quantity)
    db.refresh(cart)
    return cart


@router.put("/", response_model=schemas.CartOut)
def set_cart_quantity(
    body: schemas.CartItemSet,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if body.quantity > 0:
        _in_stock_product(db, body.product_id, body.quantity)
    cart = crud.get_or_create_cart(db, current_user["id"])
    crud.set_cart_quantity(db, cart, body.product_id, body.quantity)
    db.refresh(cart)
    return cart


@router.delete("/", response_model=schemas.CartOut)
def remove_from_cart(
    product_id: Optional[int] = Query(None, alias="productId", description="Omit to clear the cart"),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    cart = crud.get_or_create_cart(db, current_user["id"])
    crud.remove_from_cart(db, cart, product_id)
    db.refresh(cart)
    return cart
