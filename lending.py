"""Borrow and return transitions.

Every function takes the session it works in; nothing here keeps state
between calls. Timestamps are naive UTC.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from availability import available_copies
from database import transaction
from errors import Forbidden, NotFound, Rejected
from models import Book, Borrowing, Member

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class LendingPolicy:
    max_open_borrowings: int = 2
    loan_period_days: int = 7
    penalty_days: int = 3


DEFAULT_POLICY = LendingPolicy()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return utcnow()
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def _get_member(db: Session, member_code: str) -> Member:
    member = db.query(Member).filter(Member.code == member_code).with_for_update().first()
    if not member:
        raise NotFound(f"Member {member_code} not found")
    return member


def _get_book(db: Session, book_code: str) -> Book:
    book = db.query(Book).filter(Book.code == book_code).with_for_update().first()
    if not book:
        raise NotFound(f"Book {book_code} not found")
    return book


def _open_borrowing(db: Session, member_code: str, book_code: str) -> Optional[Borrowing]:
    return (
        db.query(Borrowing)
        .filter(
            Borrowing.member_code == member_code,
            Borrowing.book_code == book_code,
            Borrowing.returned_at.is_(None),
        )
        .first()
    )


def open_borrowing_count(db: Session, member_code: str) -> int:
    return (
        db.query(func.count(Borrowing.id))
        .filter(Borrowing.member_code == member_code, Borrowing.returned_at.is_(None))
        .scalar()
    )


def days_borrowed(borrowed_at: datetime, returned_at: datetime) -> int:
    """Whole days between the two moments; a partial day does not count."""
    return (returned_at - borrowed_at) // ONE_DAY


def borrow_book(
    db: Session,
    member_code: str,
    book_code: str,
    now: Optional[datetime] = None,
    policy: LendingPolicy = DEFAULT_POLICY,
) -> Borrowing:
    """Lend ``book_code`` to ``member_code``.

    The checks run in a fixed order and the first failing one is reported:
    penalty, loan limit, duplicate loan, availability. A member asking
    again for a book they already hold hears about the duplicate even when
    that loan took the last copy.
    """
    now = _as_utc(now)
    try:
        with transaction(db):
            member = _get_member(db, member_code)
            if member.is_penalized(now):
                raise Forbidden(
                    f"Member {member_code} cannot borrow books because it got penalized "
                    f"until {member.penalty.isoformat()}",
                    reason="penalized",
                )

            if open_borrowing_count(db, member_code) >= policy.max_open_borrowings:
                raise Rejected(
                    f"Member cannot borrow more than {policy.max_open_borrowings} books",
                    reason="loan_limit",
                )

            _get_book(db, book_code)
            if _open_borrowing(db, member_code, book_code):
                raise Rejected(
                    f"Book {book_code} already borrowed by member {member_code}",
                    reason="duplicate_loan",
                )

            if available_copies(db, book_code) <= 0:
                raise Rejected(f"Book {book_code} is not available", reason="unavailable")

            borrowing = Borrowing(member_code=member_code, book_code=book_code, borrowed_at=now)
            db.add(borrowing)
            db.flush()
    except (Forbidden, Rejected) as exc:
        logger.info("Borrow refused: member=%s book=%s reason=%s", member_code, book_code, exc.reason)
        raise

    logger.info("Book borrowed: member=%s book=%s borrowing=%s", member_code, book_code, borrowing.id)
    return borrowing


def return_book(
    db: Session,
    member_code: str,
    book_code: str,
    now: Optional[datetime] = None,
    policy: LendingPolicy = DEFAULT_POLICY,
) -> Borrowing:
    """Close the open loan of ``book_code`` held by ``member_code``.

    A loan kept longer than the loan period puts the member under penalty
    for ``policy.penalty_days`` from now. A penalty already running is
    replaced, not extended.
    """
    now = _as_utc(now)
    try:
        with transaction(db):
            member = _get_member(db, member_code)
            _get_book(db, book_code)

            borrowing = _open_borrowing(db, member_code, book_code)
            if not borrowing:
                raise Rejected(
                    f"Book {book_code} was not borrowed by member {member_code}",
                    reason="not_borrowed",
                )

            borrowing.returned_at = now
            late = days_borrowed(borrowing.borrowed_at, now) > policy.loan_period_days
            if late:
                member.penalty = now + timedelta(days=policy.penalty_days)
    except Rejected as exc:
        logger.info("Return refused: member=%s book=%s reason=%s", member_code, book_code, exc.reason)
        raise

    if late:
        logger.info("Late return: member=%s penalized until %s", member_code, member.penalty.isoformat())
    logger.info("Book returned: member=%s book=%s borrowing=%s", member_code, book_code, borrowing.id)
    return borrowing


def list_members(db: Session) -> List[dict]:
    with transaction(db):
        counts = dict(
            db.query(Borrowing.member_code, func.count(Borrowing.id))
            .filter(Borrowing.returned_at.is_(None))
            .group_by(Borrowing.member_code)
            .all()
        )
        return [
            {
                "code": member.code,
                "name": member.name,
                "penalty_expiry": member.penalty,
                "open_count": counts.get(member.code, 0),
            }
            for member in db.query(Member).order_by(Member.code).all()
        ]


def list_borrowings(db: Session, open_only: bool = False) -> List[dict]:
    query = db.query(Borrowing).options(joinedload(Borrowing.member), joinedload(Borrowing.book))
    if open_only:
        query = query.filter(Borrowing.returned_at.is_(None))

    with transaction(db):
        return [
            {
                "id": borrow.id,
                "member_code": borrow.member_code,
                "member_name": borrow.member.name if borrow.member else None,
                "book_code": borrow.book_code,
                "book_title": borrow.book.title if borrow.book else None,
                "borrowed_at": borrow.borrowed_at,
                "returned_at": borrow.returned_at,
            }
            for borrow in query.order_by(Borrowing.borrowed_at.desc(), Borrowing.id.desc()).all()
        ]
