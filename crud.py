from datetime import date
from typing import Optional, Type

from sqlalchemy import func, or_, update as sql_update
from sqlalchemy.orm import Session

import models
import schemas
from database import Base
from errors import NotFoundError


# --- Generic storage operations ---
def get(db: Session, model: Type[Base], entity_id: int):
    """Get an entity by primary key, or None."""
    return db.get(model, entity_id)


def require(db: Session, model: Type[Base], entity_id: int):
    """Get an entity by primary key or raise NotFoundError."""
    entity = db.get(model, entity_id)
    if entity is None:
        raise NotFoundError(model.__name__, entity_id)
    return entity


def create(db: Session, model: Type[Base], **fields):
    entity = model(**fields)
    db.add(entity)
    db.flush()  # Assign ID without committing
    return entity


def update(db: Session, entity, **fields):
    for name, value in fields.items():
        setattr(entity, name, value)
    db.add(entity)  # add works for updates too
    db.flush()
    return entity


def delete(db: Session, model: Type[Base], entity_id: int) -> None:
    """Delete by primary key. ORM cascades take care of dependent rows."""
    entity = require(db, model, entity_id)
    db.delete(entity)
    db.flush()


def increment(
    db: Session,
    model: Type[Base],
    entity_id: int,
    column: str,
    amount: int,
    floor: Optional[int] = None,
) -> bool:
    """Atomically add ``amount`` to a numeric column of a single row.

    With ``floor`` set the update only applies when the result stays at or
    above it. Returns False when no row was changed (missing row or floor hit).
    The statement runs in the caller's transaction; nothing is committed here.
    """
    target = getattr(model, column)
    stmt = sql_update(model).where(model.id == entity_id)
    if floor is not None:
        stmt = stmt.where(target + amount >= floor)
    stmt = stmt.values({column: target + amount}).execution_options(synchronize_session=False)
    result = db.execute(stmt)
    return result.rowcount == 1


def count(db: Session, model: Type[Base], *criteria) -> int:
    return db.query(func.count(model.id)).filter(*criteria).scalar() or 0


# --- User CRUD ---
def get_user_by_id(db: Session, user_id: int):
    """Get a user by their primary key ID."""
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str):
    return db.query(models.User).filter(models.User.email == email).first()


def create_user(db: Session, user: schemas.UserCreate):
    return create(
        db,
        models.User,
        email=user.email,
        name=user.name,
        lastname=user.lastname,
        role=user.role.value,
        city_id=user.city_id,
        phone=user.phone,
        address=user.address,
    )


# --- Lookups ---
def list_cities(db: Session):
    return db.query(models.City).order_by(models.City.name).all()


def list_categories(db: Session):
    return db.query(models.Category).order_by(models.Category.name).all()


# --- Company CRUD ---
def get_company_for_user(db: Session, user_id: int):
    return db.query(models.Company).filter(models.Company.user_id == user_id).first()


# --- Post CRUD ---
def list_posts(
    db: Session,
    category_id: Optional[int] = None,
    location_id: Optional[int] = None,
    search: Optional[str] = None,
    include_expired: bool = False,
):
    query = db.query(models.Post)
    if category_id is not None:
        query = query.filter(models.Post.category_id == category_id)
    if location_id is not None:
        query = query.filter(models.Post.location_id == location_id)
    if search:
        query = query.filter(models.Post.title.ilike(f"%{search}%"))
    if not include_expired:
        query = query.filter(
            or_(models.Post.expiration_date.is_(None), models.Post.expiration_date >= date.today())
        )
    return query.order_by(models.Post.created_at.desc(), models.Post.id.desc()).all()


def get_posts_for_user(db: Session, user_id: int):
    return db.query(models.Post).filter(models.Post.user_id == user_id).all()


# --- Saved posts ---
def get_saved_post(db: Session, user_id: int, post_id: int):
    return (
        db.query(models.SavedPost)
        .filter(models.SavedPost.user_id == user_id, models.SavedPost.post_id == post_id)
        .first()
    )


def list_saved_posts(db: Session, user_id: int):
    return (
        db.query(models.Post)
        .join(models.SavedPost, models.SavedPost.post_id == models.Post.id)
        .filter(models.SavedPost.user_id == user_id)
        .order_by(models.SavedPost.id.desc())
        .all()
    )


# --- Application CRUD ---
def get_application_for(db: Session, user_id: int, post_id: int):
    return (
        db.query(models.Application)
        .filter(models.Application.user_id == user_id, models.Application.post_id == post_id)
        .first()
    )


def list_applications_for_user(db: Session, user_id: int):
    return (
        db.query(models.Application)
        .filter(models.Application.user_id == user_id)
        .order_by(models.Application.id.desc())
        .all()
    )


def list_applications_for_employer(db: Session, employer_id: int):
    """Applications received on every post owned by ``employer_id``."""
    return (
        db.query(models.Application)
        .join(models.Post)
        .filter(models.Post.user_id == employer_id)
        .order_by(models.Application.id.desc())
        .all()
    )


# --- CV CRUD ---
def get_cv_for_user(db: Session, user_id: int):
    return db.query(models.CV).filter(models.CV.user_id == user_id).first()
