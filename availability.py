from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import transaction
from errors import NotFound
from models import Book, Borrowing


def _open_counts():
    """Open borrowings per book, as a subquery."""
    return (
        select(Borrowing.book_code, func.count(Borrowing.id).label("borrowed"))
        .where(Borrowing.returned_at.is_(None))
        .group_by(Borrowing.book_code)
        .subquery()
    )


def _availability_query(db: Session, book_code: Optional[str] = None):
    counts = _open_counts()
    available = (Book.stock - func.coalesce(counts.c.borrowed, 0)).label("available")
    query = db.query(Book.code, available).outerjoin(counts, Book.code == counts.c.book_code)
    if book_code is not None:
        query = query.filter(Book.code == book_code)
    return query


def available_copies(db: Session, book_code: str) -> int:
    row = _availability_query(db, book_code).first()
    if row is None:
        raise NotFound(f"Book {book_code} not found")
    return row.available


def availability_by_book(db: Session) -> Dict[str, int]:
    return {row.code: row.available for row in _availability_query(db)}


def list_books(db: Session) -> List[dict]:
    with transaction(db):
        available = availability_by_book(db)
        return [
            {"code": book.code, "title": book.title, "author": book.author, "available": available[book.code]}
            for book in db.query(Book).order_by(Book.code)
        ]
