"""
SequenceService -- monotonic document-number allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence values for requisition and
    purchase-order numbers.  Uses a dedicated counter table with row-level
    locking (``SELECT ... FOR UPDATE``) so that concurrent conversions never
    receive the same value.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by the SQL
    ledger store on a session of its own, committed right after the
    allocation.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value.  Aggregate ``MAX(...) + 1`` is never used.
    - Transactional: the increment becomes visible when the session it
      ran in commits.  The ledger store commits it at once, so a value is
      spent even if the document that asked for it is never written.

Failure modes:
    - IntegrityError on concurrent first use of a sequence (handled via
      savepoint rollback and retry).
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from procurement_kernel.db.base import Base
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One row per named sequence holding its last allocated value."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Transactional sequence numbers.

    Contract:
        Returns the next strictly increasing integer for a sequence name.
        Does NOT commit; the caller owns the transaction boundary.

    Usage:
        with session.begin():
            seq = SequenceService(session).next_value(SequenceService.PURCHASE_ORDER)
    """

    REQUISITION = "requisition"
    PURCHASE_ORDER = "purchase_order"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment, return.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously committed for this sequence name.
            - The counter row stays locked until the transaction ends.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        # Fresh read: sessions run with expire_on_commit=False. Flush first so
        # pending changes of the caller survive the expiry.
        self._session.flush()
        self._session.expire_all()
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
