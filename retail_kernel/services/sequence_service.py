"""
Named, gap-free counters stored in ``sequence_counters``.

The audit chain is ordered by these values.  A counter row is read with
``FOR UPDATE`` and bumped in place, so two writers never receive the same
number; the value is only spent if the caller's transaction commits.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from retail_kernel.logging_config import get_logger
from retail_kernel.models.audit_event import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _counter(self, name: str, *, lock: bool) -> SequenceCounter | None:
        query = select(SequenceCounter).where(SequenceCounter.name == name)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(query).scalar_one_or_none()

    def _create_counter(self, name: str) -> SequenceCounter | None:
        """Insert the first row for ``name``; None if a concurrent writer won."""
        savepoint = self._session.begin_nested()
        counter = SequenceCounter(name=name, current_value=0)
        self._session.add(counter)
        try:
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_created_concurrently", extra={"sequence_name": name})
            return None
        savepoint.commit()
        return counter

    def next_value(self, name: str) -> int:
        """Return a value greater than every value this sequence has committed."""
        counter = self._counter(name, lock=True) or self._create_counter(name)
        if counter is None:
            counter = self._counter(name, lock=True)
        if counter is None:
            raise RuntimeError(f"Sequence counter {name!r} could not be created")

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        counter = self._counter(name, lock=False)
        return None if counter is None else counter.current_value
