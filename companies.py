"""Employer-side glue: company profiles, job posts and saved posts."""
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import crud
import models
import schemas
from errors import (
    CompanyAlreadyExists,
    MissingCompany,
    NotFoundError,
    NotOwner,
    StorageFailure,
    WrongRole,
)
from files import FileStore, stored_name, validate_image
from schemas import Caller, FileUpload

logger = structlog.get_logger(__name__)

COMPANY_FOLDER = "company"


def _discard(file_store: FileStore, path: str) -> None:
    try:
        file_store.delete(path)
    except StorageFailure:
        logger.warning("Leaving orphaned company image", stored_path=path)


def _owned_company(db: Session, company_id: int, caller: Caller) -> models.Company:
    company = crud.require(db, models.Company, company_id)
    if company.user_id != caller.user_id:
        raise NotOwner("You are not allowed to change this company.")
    return company


# --- Companies ---
def create_company(
    db: Session,
    caller: Caller,
    data: schemas.CompanyCreate,
    image: FileUpload,
    file_store: FileStore,
) -> models.Company:
    if not caller.is_employer:
        raise WrongRole("You are registered as an Employee")
    if crud.get_company_for_user(db, caller.user_id):
        raise CompanyAlreadyExists()
    validate_image(image)

    path = file_store.put(stored_name(COMPANY_FOLDER, image.filename), image.data)
    try:
        company = crud.create(db, models.Company, user_id=caller.user_id, image=path, **data.model_dump())
        db.commit()
    except IntegrityError:
        db.rollback()
        _discard(file_store, path)
        raise CompanyAlreadyExists()
    except Exception:
        db.rollback()
        _discard(file_store, path)
        raise

    db.refresh(company)
    logger.info("Company created", company_id=company.id, user_id=caller.user_id)
    return company


def update_company(db: Session, company_id: int, caller: Caller, data: schemas.CompanyUpdate) -> models.Company:
    company = _owned_company(db, company_id, caller)
    crud.update(db, company, **data.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(company)
    return company


def update_company_image(
    db: Session, company_id: int, caller: Caller, image: FileUpload, file_store: FileStore
) -> models.Company:
    company = _owned_company(db, company_id, caller)
    validate_image(image)

    old_path = company.image
    new_path = file_store.put(stored_name(COMPANY_FOLDER, image.filename), image.data)
    try:
        crud.update(db, company, image=new_path)
        db.commit()
    except Exception:
        db.rollback()
        _discard(file_store, new_path)
        raise

    if old_path:
        _discard(file_store, old_path)
    db.refresh(company)
    logger.info("Company image updated", company_id=company_id)
    return company


def delete_company(db: Session, company_id: int, caller: Caller, file_store: FileStore) -> None:
    company = _owned_company(db, company_id, caller)
    image = company.image
    db.delete(company)
    db.commit()
    _discard(file_store, image)
    logger.info("Company deleted", company_id=company_id)


# --- Posts ---
def create_post(db: Session, caller: Caller, data: schemas.PostCreate) -> models.Post:
    if not caller.is_employer:
        raise WrongRole("Only employers can post jobs")
    company = crud.get_company_for_user(db, caller.user_id)
    if company is None:
        raise MissingCompany()
    if data.category_id is not None:
        crud.require(db, models.Category, data.category_id)
    if data.location_id is not None:
        crud.require(db, models.City, data.location_id)

    post = crud.create(db, models.Post, user_id=caller.user_id, company_id=company.id, **data.model_dump())
    db.commit()
    db.refresh(post)
    logger.info("Post created", post_id=post.id, user_id=caller.user_id, nr_workers=post.nr_workers)
    return post


def delete_post(db: Session, post_id: int, caller: Caller) -> None:
    post = crud.require(db, models.Post, post_id)
    if post.user_id != caller.user_id:
        raise NotOwner("You are not allowed to delete this post.")
    db.delete(post)
    db.commit()
    logger.info("Post deleted", post_id=post_id)


# --- Saved posts ---
def save_post(db: Session, caller: Caller, post_id: int) -> models.SavedPost:
    crud.require(db, models.Post, post_id)
    saved = crud.get_saved_post(db, caller.user_id, post_id)
    if saved:
        return saved
    saved = crud.create(db, models.SavedPost, user_id=caller.user_id, post_id=post_id)
    db.commit()
    db.refresh(saved)
    return saved


def unsave_post(db: Session, caller: Caller, post_id: int) -> None:
    saved = crud.get_saved_post(db, caller.user_id, post_id)
    if saved is None:
        raise NotFoundError("SavedPost")
    db.delete(saved)
    db.commit()


# --- Dashboards ---
def applications_received(db: Session, caller: Caller):
    if not caller.is_employer:
        raise WrongRole("Only employers receive applications")
    return crud.list_applications_for_employer(db, caller.user_id)


def applicant_cv(db: Session, application_id: int, caller: Caller) -> Optional[models.CV]:
    """The CV behind an application, visible to the post's owner."""
    application = crud.require(db, models.Application, application_id)
    if application.post.user_id != caller.user_id and not caller.is_admin:
        raise NotOwner("Only the employer who posted this job can see this CV")
    return crud.get_cv_for_user(db, application.user_id)
