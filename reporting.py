"""Admin statistics and privileged deletions."""
from __future__ import annotations

from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

import crud
import models
import schemas
from errors import StorageFailure
from files import FileStore, get_file_store
from models import ApplicationStatus, Role

logger = structlog.get_logger(__name__)


class Reporting:
    def __init__(self, db: Session, file_store: Optional[FileStore] = None) -> None:
        self.db = db
        self.file_store = file_store or get_file_store()

    def stats(self) -> schemas.Stats:
        def applications_with(status: ApplicationStatus) -> int:
            return crud.count(self.db, models.Application, models.Application.status == status.value)

        return schemas.Stats(
            employees=crud.count(self.db, models.User, models.User.role == Role.EMPLOYEE.value),
            employers=crud.count(self.db, models.User, models.User.role == Role.EMPLOYER.value),
            posts=crud.count(self.db, models.Post),
            applications=crud.count(self.db, models.Application),
            accepted=applications_with(ApplicationStatus.ACCEPTED),
            rejected=applications_with(ApplicationStatus.REJECTED),
            pending=applications_with(ApplicationStatus.PENDING),
        )

    def delete_user(self, user_id: int) -> None:
        """Delete any user with everything they own. Their applications do not release slots."""
        user = crud.require(self.db, models.User, user_id)
        files: List[str] = []
        if user.cv is not None:
            files.append(user.cv.file)
        if user.company is not None and user.company.image:
            files.append(user.company.image)

        crud.delete(self.db, models.User, user_id)
        self.db.commit()
        self._discard(files)
        logger.info("User deleted by admin", user_id=user_id, files_removed=len(files))

    def delete_post(self, post_id: int) -> None:
        crud.delete(self.db, models.Post, post_id)
        self.db.commit()
        logger.info("Post deleted by admin", post_id=post_id)

    def _discard(self, paths: List[str]) -> None:
        for path in paths:
            try:
                self.file_store.delete(path)
            except StorageFailure:
                logger.warning("Leaving orphaned file", stored_path=path)
