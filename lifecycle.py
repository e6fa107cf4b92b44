"""Application lifecycle: apply, withdraw, accept, reject.

Status machine over {pending, accepted, rejected}. ``accept`` moves pending or
rejected to accepted, ``reject`` moves pending or accepted to rejected, and
there is no terminal state. Withdrawing (owner only) deletes the application
and is the only way out.

Calling ``accept`` on an accepted application (or ``reject`` on a rejected
one) leaves the status alone and notifies the applicant again.

Notifications are queued strictly after commit and a failure to queue one
never undoes the committed change.
"""
from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import crud
import models
import notifier as notifications
from capacity import CapacityTracker
from cv_registry import CVRegistry
from errors import DuplicateApplication, MissingCV, NoCapacity, NotOwner, WrongRole
from models import ApplicationStatus
from schemas import Caller
from settings import get_settings

logger = structlog.get_logger(__name__)

_ACCEPT_FROM = {ApplicationStatus.PENDING.value, ApplicationStatus.REJECTED.value}
_REJECT_FROM = {ApplicationStatus.PENDING.value, ApplicationStatus.ACCEPTED.value}


class ApplicationLifecycle:
    def __init__(self, db: Session, notifier: notifications.Notifier) -> None:
        self.db = db
        self.notifier = notifier
        self.capacity = CapacityTracker(db)
        self.cvs = CVRegistry(db)

    def apply(self, caller: Caller, post_id: int) -> models.Application:
        if caller.is_employer:
            raise WrongRole("You are registered as an employer")

        with self.capacity.serialized(post_id):
            try:
                post = crud.require(self.db, models.Post, post_id)
                self.db.refresh(post, attribute_names=["nr_workers"])
                if post.nr_workers <= 0:
                    raise NoCapacity()
                if crud.get_application_for(self.db, caller.user_id, post_id):
                    raise DuplicateApplication()
                if not self.cvs.has_cv(caller.user_id):
                    raise MissingCV()

                self.capacity.reserve_slot(post_id)
                application = crud.create(
                    self.db,
                    models.Application,
                    user_id=caller.user_id,
                    post_id=post_id,
                    status=ApplicationStatus.PENDING.value,
                )
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.info("Concurrent duplicate application", user_id=caller.user_id, post_id=post_id)
                raise DuplicateApplication()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(application)
        logger.info(
            "Application created",
            application_id=application.id,
            user_id=caller.user_id,
            post_id=post_id,
        )
        payload = self._payload(application)
        self._notify(notifications.NEW_APPLICATION, application.post.owner.email, payload)
        self._notify(notifications.APPLICATION_RECEIVED, application.applicant.email, payload)
        return application

    def withdraw(self, application_id: int, caller: Caller) -> None:
        application = crud.require(self.db, models.Application, application_id)
        if application.user_id != caller.user_id:
            raise NotOwner("You are not allowed to delete this application")
        post_id = application.post_id

        with self.capacity.serialized(post_id):
            try:
                # Re-read under the lock; a concurrent withdraw may have won.
                self.db.expire(application)
                application = crud.require(self.db, models.Application, application_id)
                self.db.delete(application)
                self.db.flush()
                self.capacity.release_slot(post_id)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info("Application withdrawn", application_id=application_id, post_id=post_id)

    def accept(self, application_id: int, caller: Optional[Caller] = None) -> models.Application:
        return self._decide(
            application_id,
            ApplicationStatus.ACCEPTED,
            _ACCEPT_FROM,
            notifications.APPLICATION_ACCEPTED,
            caller,
        )

    def reject(self, application_id: int, caller: Optional[Caller] = None) -> models.Application:
        return self._decide(
            application_id,
            ApplicationStatus.REJECTED,
            _REJECT_FROM,
            notifications.APPLICATION_REJECTED,
            caller,
        )

    def _decide(
        self,
        application_id: int,
        target: ApplicationStatus,
        allowed_from: set,
        template: str,
        caller: Optional[Caller],
    ) -> models.Application:
        application = crud.require(self.db, models.Application, application_id)
        if caller is not None and not caller.is_admin and application.post.user_id != caller.user_id:
            raise NotOwner("Only the employer who posted this job can decide on it")

        previous = application.status
        if previous in allowed_from:
            application.status = target.value
            self.db.commit()
            self.db.refresh(application)
            logger.info(
                "Application status changed",
                application_id=application_id,
                previous=previous,
                status=target.value,
            )
        else:
            logger.info("Application status unchanged", application_id=application_id, status=previous)

        self._notify(template, application.applicant.email, self._payload(application))
        return application

    def _payload(self, application: models.Application) -> dict:
        post = application.post
        applicant = application.applicant
        base_url = get_settings().app_base_url.rstrip("/")
        return {
            "application_id": application.id,
            "post_id": post.id,
            "post_title": post.title,
            "company": post.company.name if post.company else None,
            "applicant_name": " ".join(filter(None, [applicant.name, applicant.lastname])),
            "status": application.status,
            "post_url": f"{base_url}/posts/{post.id}",
        }

    def _notify(self, template: str, recipient: str, payload: dict) -> None:
        try:
            self.notifier.enqueue(template, recipient, payload)
        except Exception as exc:
            logger.error("Could not queue notification", template=template, recipient=recipient, exc_info=exc)
