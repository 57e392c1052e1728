"""
Shared constructor for session-bound services.

A service writes through ``session.flush()`` and leaves commit and rollback
to whoever opened the session (``session_scope``, a request handler, or the
test harness).  Units of work that must succeed or fail together run inside
``db.atomic()``.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from retail_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    def __init__(self, session: Session):
        self.session = session
