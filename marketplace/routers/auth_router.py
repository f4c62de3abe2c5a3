from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import structlog

from .. import crud, schemas
from ..auth import create_access_token, get_password_hash, verify_password
from ..database import get_db
from ..errors import Conflict, Unauthenticated, ValidationError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

# ADMIN accounts are never self-registered
SELF_SERVICE_ROLES = ("BUYER", "SELLER")


def _auth_response(user) -> dict:
    return {
        "token": create_access_token(user.id, user.role, user.email),
        "user": schemas.UserOut.model_validate(user),
    }


@router.post("/register", response_model=schemas.AuthResponse, status_code=status.HTTP_201_CREATED)
def register(body: schemas.RegisterRequest, db: Session = Depends(get_db)):
    role = (body.role or "BUYER").upper()
    if role not in SELF_SERVICE_ROLES:
        raise ValidationError("Role must be BUYER or SELLER")

    email = body.email.strip().lower()
    if crud.get_user_by_email(db, email):
        raise Conflict("Email already registered")

    try:
        user = crud.create_user(
            db,
            {
                "email": email,
                "hashed_password": get_password_hash(body.password),
                "name": body.name.strip(),
                "role": role,
                "phone": body.phone,
                "company": body.company,
            },
        )
    except IntegrityError:
        db.rollback()
        raise Conflict("Email already registered")

    logger.info("user_registered", user_id=user.id, role=role)
    return _auth_response(user)


@router.post("/login", response_model=schemas.AuthResponse)
def login(body: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.get_user_by_email(db, body.email)
    if not user or not verify_password(body.password, user.hashed_password):
        raise Unauthenticated("Invalid email or password")
    return _auth_response(user)
