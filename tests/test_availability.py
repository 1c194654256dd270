from datetime import datetime

import pytest

from availability import availability_by_book, available_copies, list_books
from errors import NotFound
from lending import borrow_book, return_book

DAY_0 = datetime(2024, 1, 1, 9, 0, 0)


def test_available_copies_without_loans_equals_stock(db, seed):
    seed(books={"JK-45": 2, "SHR-1": 0})

    assert available_copies(db, "JK-45") == 2
    assert available_copies(db, "SHR-1") == 0


def test_available_copies_unknown_book(db, seed):
    seed(books={"JK-45": 1})

    with pytest.raises(NotFound):
        available_copies(db, "NOPE")


def test_open_loans_reduce_availability(db, seed):
    seed(members={"M001": "Angga", "M002": "Ferry"}, books={"JK-45": 2})

    borrow_book(db, "M001", "JK-45", now=DAY_0)
    assert available_copies(db, "JK-45") == 1

    borrow_book(db, "M002", "JK-45", now=DAY_0)
    assert available_copies(db, "JK-45") == 0


def test_returned_loans_do_not_count(db, seed):
    seed(members={"M001": "Angga"}, books={"JK-45": 1})

    borrow_book(db, "M001", "JK-45", now=DAY_0)
    return_book(db, "M001", "JK-45", now=DAY_0)

    assert available_copies(db, "JK-45") == 1


def test_bulk_availability_covers_every_book(db, seed):
    seed(members={"M001": "Angga"}, books={"JK-45": 1, "SHR-1": 1, "TW-11": 3})

    borrow_book(db, "M001", "TW-11", now=DAY_0)

    assert availability_by_book(db) == {"JK-45": 1, "SHR-1": 1, "TW-11": 2}


def test_list_books_shape(db, seed):
    seed(members={"M001": "Angga"}, books={"SHR-1": 1, "JK-45": 1})
    borrow_book(db, "M001", "SHR-1", now=DAY_0)

    books = list_books(db)

    assert books == [
        {"code": "JK-45", "title": "Title JK-45", "author": "Author JK-45", "available": 1},
        {"code": "SHR-1", "title": "Title SHR-1", "author": "Author SHR-1", "available": 0},
    ]


def test_list_books_empty(db):
    assert list_books(db) == []
