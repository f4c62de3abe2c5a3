from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_admin
from ..database import get_db
from ..errors import Conflict, NotFound, ValidationError

router = APIRouter(prefix="/categories", tags=["Categories"])

_CATEGORY_ERRORS = {
    "name_required": (ValidationError, "Category name is required"),
    "duplicate_category": (Conflict, "Category already exists"),
    "category_own_parent": (ValidationError, "A category cannot be its own parent"),
    "category_has_children": (ValidationError, "Cannot delete a category that has subcategories"),
    "category_has_products": (ValidationError, "Cannot delete a category that has products"),
}


def _raise_for(e: ValueError):
    error_cls, detail = _CATEGORY_ERRORS.get(str(e), (ValidationError, str(e)))
    raise error_cls(detail)


def _out(db: Session, category) -> schemas.CategoryOut:
    out = schemas.CategoryOut.model_validate(category)
    out.product_count = crud.count_products_in_category(db, category.id)
    return out


def _detail(db: Session, category) -> schemas.CategoryDetail:
    return schemas.CategoryDetail(
        **_out(db, category).model_dump(),
        parent=_out(db, category.parent) if category.parent is not None else None,
        children=[_out(db, c) for c in category.children],
    )


def _existing(db: Session, category_id: Optional[int]):
    if category_id is None:
        raise ValidationError("Category id is required")
    category = crud.get_category(db, category_id=category_id)
    if category is None:
        raise NotFound("Category not found")
    return category


@router.get("/", response_model=Union[schemas.CategoryDetail, List[schemas.CategoryDetail]])
def view_categories(
    category_id: Optional[int] = Query(None, alias="id"),
    slug: Optional[str] = Query(None),
    top_level: bool = Query(False, alias="topLevel"),
    db: Session = Depends(get_db),
):
    if category_id is not None or slug:
        category = crud.get_category(db, category_id=category_id, slug=slug)
        if category is None:
            raise NotFound("Category not found")
        return _detail(db, category)
    return [_detail(db, c) for c in crud.get_categories(db, top_level=top_level)]


@router.post("/", response_model=schemas.CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(
    body: schemas.CategoryCreate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    if body.parent_id is not None and crud.get_category(db, category_id=body.parent_id) is None:
        raise NotFound("Parent category not found")
    try:
        return _out(db, crud.create_category(db, body.model_dump()))
    except ValueError as e:
        _raise_for(e)
    except IntegrityError:
        db.rollback()
        raise Conflict("Category already exists")


@router.put("/", response_model=schemas.CategoryOut)
def update_category(
    body: schemas.CategoryUpdate,
    category_id: Optional[int] = Query(None, alias="id"),
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    category = _existing(db, category_id)
    update_data = body.model_dump(exclude_unset=True)
    parent_id = update_data.get("parent_id")
    if parent_id is not None and parent_id != category.id and crud.get_category(db, category_id=parent_id) is None:
        raise NotFound("Parent category not found")
    try:
        return _out(db, crud.update_category(db, category, update_data))
    except ValueError as e:
        _raise_for(e)
    except IntegrityError:
        db.rollback()
        raise Conflict("Category already exists")


@router.delete("/", response_model=schemas.MessageOut)
def delete_category(
    category_id: Optional[int] = Query(None, alias="id"),
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    category = _existing(db, category_id)
    try:
        crud.delete_category(db, category)
    except ValueError as e:
        _raise_for(e)
    return {"message": "Category deleted"}
