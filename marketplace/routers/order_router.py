from typing import Dict, Optional, Union

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_user
from ..database import get_db
from ..errors import Forbidden, NotFound, ValidationError
from ..orders import OrderLifecycle

router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)


@router.post("/", response_model=schemas.OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(
    body: schemas.OrderCreate,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Place an order directly ("pay later").

    Stock is reserved immediately and the buyer's cart is emptied.
    """
    return OrderLifecycle(db).create_order(
        buyer_id=current_user["id"],
        items=[item.model_dump() for item in body.items],
        shipping_address=body.shipping_address,
    )


@router.get("/", response_model=Union[schemas.OrderOut, schemas.OrderListResponse])
def get_orders(
    order_id: Optional[int] = Query(None, alias="id"),
    page: int = Query(1),
    limit: int = Query(20),
    status_filter: Optional[schemas.OrderStatus] = Query(None, alias="status"),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """A single order with ``?id=``, otherwise the orders visible to the caller."""
    if order_id is not None:
        db_order = crud.get_order(db, order_id)
        if db_order is None:
            raise NotFound("Order not found")
        if db_order.buyer_id != current_user["id"] and current_user["role"] != "ADMIN":
            raise Forbidden("Access denied")
        return schemas.OrderOut.model_validate(db_order)

    page, limit, skip = crud.page_window(page, limit)
    orders, total = crud.get_orders_for(
        db,
        current_user,
        skip=skip,
        limit=limit,
        status=status_filter.value if status_filter else None,
    )
    return {
        "orders": [schemas.OrderOut.model_validate(o) for o in orders],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.put("/", response_model=schemas.OrderOut)
def update_order_status(
    body: schemas.OrderStatusUpdate,
    order_id: Optional[int] = Query(None, alias="id"),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if order_id is None:
        raise ValidationError("Order id is required")
    return OrderLifecycle(db).update_status(current_user, order_id, body.status)
