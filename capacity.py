"""Post capacity (``nr_workers``) tracking.

All changes to a post's open-slot counter go through ``CapacityTracker`` so the
non-negative invariant lives in one place. The counter is changed with a
single conditional UPDATE, so two transactions can never both take the last
slot. ``serialized`` additionally runs whole check-then-write sequences one at
a time per post inside this process.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator

import structlog
from sqlalchemy.orm import Session

import crud
import models
from errors import NoCapacity, NotFoundError

logger = structlog.get_logger(__name__)

_post_locks: Dict[int, threading.Lock] = {}
_post_locks_guard = threading.Lock()


def post_lock(post_id: int) -> threading.Lock:
    with _post_locks_guard:
        lock = _post_locks.get(post_id)
        if lock is None:
            lock = _post_locks[post_id] = threading.Lock()
        return lock


class CapacityTracker:
    """Reserve and release slots on posts. Never commits; the caller owns the transaction."""

    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def serialized(self, post_id: int) -> Iterator[None]:
        with post_lock(post_id):
            yield

    def remaining(self, post_id: int) -> int:
        post = crud.require(self.db, models.Post, post_id)
        self.db.refresh(post, attribute_names=["nr_workers"])
        return post.nr_workers

    def reserve_slot(self, post_id: int) -> None:
        if not crud.increment(self.db, models.Post, post_id, "nr_workers", -1, floor=0):
            if crud.get(self.db, models.Post, post_id) is None:
                raise NotFoundError("Post", post_id)
            logger.info("No capacity left", post_id=post_id)
            raise NoCapacity()
        logger.info("Slot reserved", post_id=post_id)

    def release_slot(self, post_id: int) -> None:
        # No upper bound: the original slot count is not recorded on the post.
        if not crud.increment(self.db, models.Post, post_id, "nr_workers", 1):
            raise NotFoundError("Post", post_id)
        logger.info("Slot released", post_id=post_id)
