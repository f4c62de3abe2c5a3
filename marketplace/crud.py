import re
import time
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .models import (
    Address,
    Cart,
    CartItem,
    Category,
    Order,
    OrderItem,
    Product,
    Review,
    User,
    Wishlist,
    WishlistItem,
)

PRODUCT_SORTS = {
    "price_asc": Product.price.asc(),
    "price_desc": Product.price.desc(),
    "newest": Product.created_at.desc(),
    "name": Product.name.asc(),
}


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def page_window(page: int, limit: int) -> Tuple[int, int, int]:
    page = max(1, page)
    limit = min(50, max(1, limit))
    return page, limit, (page - 1) * limit


# -----------------------------
# Users and addresses
# -----------------------------

def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(func.lower(User.email) == (email or "").strip().lower()).first()


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def create_user(db: Session, user_data: dict) -> User:
    db_user = User(**user_data)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def update_user(db: Session, db_user: User, update_data: dict) -> User:
    for key, value in update_data.items():
        setattr(db_user, key, value)
    db.commit()
    db.refresh(db_user)
    return db_user


def add_address(db: Session, user_id: int, address_data: dict) -> Address:
    if address_data.get("is_default"):
        db.query(Address).filter(Address.user_id == user_id).update(
            {Address.is_default: False}, synchronize_session=False
        )
    address = Address(user_id=user_id, **address_data)
    db.add(address)
    db.commit()
    db.refresh(address)
    return address


def delete_address(db: Session, user_id: int, address_id: int) -> bool:
    address = db.query(Address).filter(Address.id == address_id).first()
    if not address or address.user_id != user_id:
        return False
    db.delete(address)
    db.commit()
    return True


# -----------------------------
# Categories
# -----------------------------

def get_category(db: Session, category_id: Optional[int] = None, slug: Optional[str] = None) -> Optional[Category]:
    query = db.query(Category)
    if category_id is not None:
        return query.filter(Category.id == category_id).first()
    return query.filter(Category.slug == slug).first()


def get_categories(db: Session, top_level: bool = False) -> List[Category]:
    query = db.query(Category)
    if top_level:
        query = query.filter(Category.parent_id.is_(None))
    return query.order_by(Category.name.asc()).all()


def count_products_in_category(db: Session, category_id: int) -> int:
    return db.query(Product).filter(Product.category_id == category_id).count()


def create_category(db: Session, category_data: dict) -> Category:
    name = (category_data.get("name") or "").strip()
    if not name:
        raise ValueError("name_required")
    slug = slugify(name)
    if db.query(Category).filter(Category.slug == slug).first():
        raise ValueError("duplicate_category")
    category = Category(**{**category_data, "name": name, "slug": slug})
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def update_category(db: Session, category: Category, update_data: dict) -> Category:
    if "name" in update_data:
        name = (update_data["name"] or "").strip()
        if not name:
            raise ValueError("name_required")
        slug = slugify(name)
        clash = db.query(Category).filter(Category.slug == slug, Category.id != category.id).first()
        if clash:
            raise ValueError("duplicate_category")
        update_data = {**update_data, "name": name, "slug": slug}
    if update_data.get("parent_id") == category.id:
        raise ValueError("category_own_parent")
    for key, value in update_data.items():
        setattr(category, key, value)
    db.commit()
    db.refresh(category)
    return category


def delete_category(db: Session, category: Category) -> None:
    """Refuses while subcategories or products still point at the category."""
    if db.query(Category).filter(Category.parent_id == category.id).count() > 0:
        raise ValueError("category_has_children")
    if count_products_in_category(db, category.id) > 0:
        raise ValueError("category_has_products")
    db.delete(category)
    db.commit()


# -----------------------------
# Products
# -----------------------------

def get_product(db: Session, product_id: Optional[int] = None, slug: Optional[str] = None) -> Optional[Product]:
    query = db.query(Product)
    if product_id is not None:
        return query.filter(Product.id == product_id).first()
    return query.filter(Product.slug == slug).first()


def get_products(
    db: Session,
    *,
    skip: int = 0,
    limit: int = 20,
    search: Optional[str] = None,
    category_slug: Optional[str] = None,
    category_id: Optional[int] = None,
    seller_id: Optional[int] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    sort: Optional[str] = None,
) -> Tuple[List[Product], int]:
    query = db.query(Product).filter(Product.published.is_(True))
    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                Product.name.ilike(search_pattern),
                Product.description.ilike(search_pattern),
            )
        )
    if category_slug:
        query = query.join(Category, Product.category_id == Category.id).filter(Category.slug == category_slug)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if seller_id is not None:
        query = query.filter(Product.seller_id == seller_id)
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)

    total = query.count()
    order_by = PRODUCT_SORTS.get(sort or "", Product.created_at.desc())
    products = query.order_by(order_by, Product.id.desc()).offset(skip).limit(limit).all()
    return products, total


def create_product(db: Session, seller_id: int, product_data: dict) -> Product:
    name = (product_data.get("name") or "").strip()
    if not name:
        raise ValueError("name_required")
    if get_category(db, category_id=product_data["category_id"]) is None:
        raise ValueError("category_not_found")

    # base36 millisecond suffix keeps slugs unique across equal names
    base = f"{slugify(name)}-{_base36(int(time.time() * 1000))}"
    slug, n = base, 1
    while db.query(Product).filter(Product.slug == slug).first():
        n += 1
        slug = f"{base}-{n}"

    db_product = Product(**{**product_data, "name": name, "slug": slug, "seller_id": seller_id})
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    return db_product


def update_product(db: Session, db_product: Product, update_data: dict) -> Product:
    if "category_id" in update_data and get_category(db, category_id=update_data["category_id"]) is None:
        raise ValueError("category_not_found")
    for key, value in update_data.items():
        setattr(db_product, key, value)
    db.commit()
    db.refresh(db_product)
    return db_product


def delete_product(db: Session, db_product: Product) -> None:
    db.delete(db_product)
    db.commit()


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
        if number == 0:
            return out


# -----------------------------
# Reviews
# -----------------------------

def get_reviews(db: Session, product_id: int) -> List[Review]:
    return (
        db.query(Review)
        .filter(Review.product_id == product_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )


def upsert_review(db: Session, product_id: int, user_id: int, rating: int, comment: Optional[str]) -> Tuple[Review, bool]:
    """Returns the review and whether it was newly created."""
    rating = min(5, max(1, rating))
    existing = (
        db.query(Review)
        .filter(Review.product_id == product_id, Review.user_id == user_id)
        .first()
    )
    if existing:
        existing.rating = rating
        existing.comment = comment or None
        db.commit()
        db.refresh(existing)
        return existing, False

    review = Review(product_id=product_id, user_id=user_id, rating=rating, comment=comment or None)
    db.add(review)
    db.commit()
    db.refresh(review)
    return review, True


def get_review(db: Session, review_id: int) -> Optional[Review]:
    return db.query(Review).filter(Review.id == review_id).first()


def delete_review(db: Session, review: Review) -> None:
    db.delete(review)
    db.commit()


# -----------------------------
# Cart
# -----------------------------

def get_cart(db: Session, user_id: int) -> Optional[Cart]:
    return db.query(Cart).filter(Cart.user_id == user_id).first()


def get_or_create_cart(db: Session, user_id: int) -> Cart:
    cart = get_cart(db, user_id)
    if cart is None:
        cart = Cart(user_id=user_id)
        db.add(cart)
        db.commit()
        db.refresh(cart)
    return cart


def add_to_cart(db: Session, cart: Cart, product_id: int, quantity: int) -> CartItem:
    existing = (
        db.query(CartItem)
        .filter(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
        .first()
    )
    if existing:
        existing.quantity += quantity
        item = existing
    else:
        item = CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity)
        db.add(item)
    cart.updated_at = func.now()
    db.commit()
    db.refresh(item)
    return item


def set_cart_quantity(db: Session, cart: Cart, product_id: int, quantity: int) -> None:
    """quantity <= 0 removes the line."""
    existing = (
        db.query(CartItem)
        .filter(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
        .first()
    )
    if quantity <= 0:
        if existing is not None:
            db.delete(existing)
    elif existing is None:
        db.add(CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity))
    else:
        existing.quantity = quantity
    cart.updated_at = func.now()
    db.commit()


def remove_from_cart(db: Session, cart: Cart, product_id: Optional[int] = None) -> int:
    query = db.query(CartItem).filter(CartItem.cart_id == cart.id)
    if product_id is not None:
        query = query.filter(CartItem.product_id == product_id)
    deleted = query.delete(synchronize_session=False)
    db.commit()
    return int(deleted or 0)


# -----------------------------
# Wishlist
# -----------------------------

def get_wishlist(db: Session, user_id: int) -> Optional[Wishlist]:
    return db.query(Wishlist).filter(Wishlist.user_id == user_id).first()


def get_or_create_wishlist(db: Session, user_id: int) -> Wishlist:
    wishlist = get_wishlist(db, user_id)
    if wishlist is None:
        wishlist = Wishlist(user_id=user_id)
        db.add(wishlist)
        db.commit()
        db.refresh(wishlist)
    return wishlist


def add_to_wishlist(db: Session, wishlist: Wishlist, product_id: int) -> bool:
    """Returns False when the product was already on the wishlist."""
    existing = (
        db.query(WishlistItem)
        .filter(WishlistItem.wishlist_id == wishlist.id, WishlistItem.product_id == product_id)
        .first()
    )
    if existing:
        return False
    db.add(WishlistItem(wishlist_id=wishlist.id, product_id=product_id))
    db.commit()
    return True


def remove_from_wishlist(db: Session, wishlist: Wishlist, product_id: int) -> int:
    deleted = (
        db.query(WishlistItem)
        .filter(WishlistItem.wishlist_id == wishlist.id, WishlistItem.product_id == product_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return int(deleted or 0)


# -----------------------------
# Orders (reads)
# -----------------------------

def get_order(db: Session, order_id: int) -> Optional[Order]:
    return db.query(Order).filter(Order.id == order_id).first()


def get_orders_for(db: Session, user: Dict, *, skip: int = 0, limit: int = 20, status: Optional[str] = None) -> Tuple[List[Order], int]:
    """Buyers see their own orders, sellers the ones holding their products, admins all."""
    query = db.query(Order)
    if user["role"] == "BUYER":
        query = query.filter(Order.buyer_id == user["id"])
    elif user["role"] == "SELLER":
        seller_order_ids = (
            select(OrderItem.order_id)
            .join(Product, Product.id == OrderItem.product_id)
            .where(Product.seller_id == user["id"])
        )
        query = query.filter(Order.id.in_(seller_order_ids))
    if status:
        query = query.filter(Order.status == status)

    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(skip).limit(limit).all()
    return orders, total
