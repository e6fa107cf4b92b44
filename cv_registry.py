"""CV registry: one CV per user.

The file is always written before the record that points at it. Superseded
or deleted files are removed only after the commit succeeded; failing to
remove one is logged and leaves an unreferenced file behind, never a record
pointing at a missing file.
"""
from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import crud
import models
from errors import CVAlreadyExists, NoExistingCV, NotOwner, StorageFailure
from files import FileStore, get_file_store, stored_name, validate_cv
from schemas import Caller, FileUpload

logger = structlog.get_logger(__name__)

CV_FOLDER = "cv"


class CVRegistry:
    def __init__(self, db: Session, file_store: Optional[FileStore] = None) -> None:
        self.db = db
        self._file_store = file_store

    @property
    def file_store(self) -> FileStore:
        if self._file_store is None:
            self._file_store = get_file_store()
        return self._file_store

    def get_for_user(self, user_id: int) -> Optional[models.CV]:
        return crud.get_cv_for_user(self.db, user_id)

    def has_cv(self, user_id: int) -> bool:
        return self.get_for_user(user_id) is not None

    def upload(self, caller: Caller, upload: FileUpload) -> models.CV:
        validate_cv(upload)
        if self.has_cv(caller.user_id):
            raise CVAlreadyExists()

        path = self.file_store.put(stored_name(CV_FOLDER, upload.filename), upload.data)
        try:
            cv = crud.create(
                self.db,
                models.CV,
                user_id=caller.user_id,
                file=path,
                original_filename=upload.filename,
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            self._discard(path)
            raise CVAlreadyExists()
        except Exception:
            self.db.rollback()
            self._discard(path)
            raise

        self.db.refresh(cv)
        logger.info("CV uploaded", cv_id=cv.id, user_id=caller.user_id)
        return cv

    def replace(self, caller: Caller, upload: FileUpload) -> models.CV:
        cv = self.get_for_user(caller.user_id)
        if cv is None:
            raise NoExistingCV()
        validate_cv(upload)

        old_path = cv.file
        new_path = self.file_store.put(stored_name(CV_FOLDER, upload.filename), upload.data)
        try:
            crud.update(self.db, cv, file=new_path, original_filename=upload.filename)
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._discard(new_path)
            raise

        self._discard(old_path)
        self.db.refresh(cv)
        logger.info("CV replaced", cv_id=cv.id, user_id=caller.user_id)
        return cv

    def delete(self, cv_id: int, caller: Caller) -> None:
        cv = crud.require(self.db, models.CV, cv_id)
        if cv.user_id != caller.user_id:
            raise NotOwner("You cannot delete this file.")

        path = cv.file
        self.db.delete(cv)
        self.db.commit()
        self._discard(path)
        logger.info("CV deleted", cv_id=cv_id, user_id=caller.user_id)

    def _discard(self, path: str) -> None:
        try:
            self.file_store.delete(path)
        except StorageFailure:
            logger.warning("Leaving orphaned CV file", stored_path=path)
