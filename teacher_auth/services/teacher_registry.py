from __future__ import annotations

import hashlib
import uuid
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from teacher_auth.core.database import SessionLocal
from teacher_auth.models.teacher import Teacher
from teacher_auth.services.errors import RegistryError

LOCK_STRIPES = 64


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class TeacherRegistry:
    """Teacher records keyed by ``user_id``.

    Writes go through ``create`` and ``mutate``, both context managers: the
    record is handed to the caller while a session and an in-process lock are
    held, and the change is committed only if the ``with`` block exits cleanly.
    Anything raised inside the block rolls the change back.

    Locks come from a fixed set of stripes, picked by email for ``create`` and
    by ``user_id`` for ``mutate``. Stripes are not reentrant, so a ``with``
    block must not call back into ``create``, ``mutate`` or ``discard``.

    Records returned to callers are detached from their session.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal, lock_stripes: int = LOCK_STRIPES) -> None:
        if lock_stripes < 1:
            raise ValueError("lock_stripes must be positive")
        self._session_factory = session_factory
        self._locks: tuple[Lock, ...] = tuple(Lock() for _ in range(lock_stripes))

    def _lock_for(self, key: str) -> Lock:
        # A key always maps to the same stripe; unrelated keys may share one.
        digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
        return self._locks[int.from_bytes(digest, "big") % len(self._locks)]

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory(expire_on_commit=False)
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise RegistryError("Teacher registry operation failed") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _active_by_user_id(db: Session, user_id: str, *, for_update: bool = False) -> Optional[Teacher]:
        query = db.query(Teacher).filter(Teacher.user_id == user_id, Teacher.is_active.is_(True))
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def _active_by_email(db: Session, email: str) -> Optional[Teacher]:
        return db.query(Teacher).filter(Teacher.email == email, Teacher.is_active.is_(True)).first()

    def find_by_user_id(self, user_id: str) -> Optional[Teacher]:
        with self._session() as db:
            return self._active_by_user_id(db, user_id)

    def find_active_by_email(self, email: str) -> Optional[Teacher]:
        with self._session() as db:
            return self._active_by_email(db, normalize_email(email))

    @contextmanager
    def create(
        self,
        *,
        name: str,
        email: str,
        pin_hash: str,
        pin_created_at: datetime,
        pin_expires_at: datetime,
    ) -> Iterator[Optional[Teacher]]:
        """Insert a new active record, yielding ``None`` if the email is taken.

        ``id`` is assigned when the insert is committed on exit from the block.

        The email lock stays held until the insert is committed, so two
        registrations of one address cannot both pass the uniqueness check.
        """
        normalized_email = normalize_email(email)
        with self._lock_for(f"email:{normalized_email}"):
            with self._session() as db:
                if self._active_by_email(db, normalized_email) is not None:
                    yield None
                    return

                teacher = Teacher(
                    user_id=str(uuid.uuid4()),
                    name=name.strip(),
                    email=normalized_email,
                    pin_hash=pin_hash,
                    pin_created_at=pin_created_at,
                    pin_expires_at=pin_expires_at,
                    failed_attempts=0,
                    locked_until=None,
                    is_active=True,
                    created_at=pin_created_at,
                )
                db.add(teacher)
                yield teacher

    @contextmanager
    def mutate(self, user_id: str) -> Iterator[Optional[Teacher]]:
        """Hold the record of ``user_id`` exclusively for a read-modify-write."""
        with self._lock_for(f"user:{user_id}"):
            with self._session() as db:
                yield self._active_by_user_id(db, user_id, for_update=True)

    def discard(self, user_id: str) -> bool:
        """Delete the record of ``user_id`` outright; its ``id`` is not handed out again."""
        with self._lock_for(f"user:{user_id}"):
            with self._session() as db:
                deleted = db.query(Teacher).filter(Teacher.user_id == user_id).delete(synchronize_session=False)
        return deleted > 0

    def deactivate(self, user_id: str) -> bool:
        with self.mutate(user_id) as teacher:
            if teacher is None:
                return False
            teacher.is_active = False
            return True
