import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

import database
from availability import list_books
from config import settings
from database import get_db, init_db
from errors import LendingError
from lending import LendingPolicy, borrow_book, list_borrowings, list_members, return_book, utcnow

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db(database.engine)
    logger.info("Schema ready on %s", database.engine.url.render_as_string(hide_password=True))
    try:
        yield
    finally:
        database.engine.dispose()


app = FastAPI(
    title="Library Lending API",
    description="Borrow and return books with loan limits and late-return penalties.",
    docs_url="/api-docs",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_clock():
    """Source of the current time; overridden in tests."""
    return utcnow


def get_policy() -> LendingPolicy:
    return LendingPolicy(
        max_open_borrowings=settings.max_open_borrowings,
        loan_period_days=settings.loan_period_days,
        penalty_days=settings.penalty_days,
    )


class BookModel(BaseModel):
    code: str
    title: str
    author: str
    available: int


class MemberModel(BaseModel):
    code: str
    name: str
    penalty_expiry: Optional[datetime] = None
    open_count: int


class BorrowingModel(BaseModel):
    id: int
    member_code: str
    member_name: Optional[str] = None
    book_code: str
    book_title: Optional[str] = None
    borrowed_at: datetime
    returned_at: Optional[datetime] = None


class MessageModel(BaseModel):
    status_code: int
    message: str


class ReturnModel(MessageModel):
    penalized_until: Optional[datetime] = None


@app.get("/")
def hello():
    return {"message": "Hello World"}


# Books

@app.get("/books", response_model=List[BookModel], tags=["Books"])
def get_books(db: Session = Depends(get_db)):
    """All books with the number of copies that can be borrowed right now."""
    return list_books(db)


# Members

@app.get("/members", response_model=List[MemberModel], tags=["Members"])
def get_members(db: Session = Depends(get_db)):
    """All members with their penalty expiry and count of books currently held."""
    return list_members(db)


@app.post(
    "/members/{member_code}/borrow/{book_code}",
    status_code=201,
    response_model=MessageModel,
    tags=["Members"],
    responses={400: {"description": "Limit reached, book unavailable or already borrowed"},
               403: {"description": "Member is penalized"},
               404: {"description": "Member or book not found"}},
)
def borrow(
    member_code: str,
    book_code: str,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    policy: LendingPolicy = Depends(get_policy),
):
    borrow_book(db, member_code, book_code, now=clock(), policy=policy)
    return {"status_code": 201, "message": "Book borrowed successfully"}


@app.post(
    "/members/{member_code}/return/{book_code}",
    status_code=201,
    response_model=ReturnModel,
    tags=["Members"],
    responses={400: {"description": "Book was not borrowed by this member"},
               404: {"description": "Member or book not found"}},
)
def return_(
    member_code: str,
    book_code: str,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    policy: LendingPolicy = Depends(get_policy),
):
    borrowing = return_book(db, member_code, book_code, now=clock(), policy=policy)
    penalty = borrowing.member.penalty
    return {
        "status_code": 201,
        "message": "Book returned successfully",
        "penalized_until": penalty if penalty and penalty > borrowing.returned_at else None,
    }


# Borrowings

@app.get("/borrowings", response_model=List[BorrowingModel], tags=["Borrowings"])
def get_borrowings(open_only: bool = False, db: Session = Depends(get_db)):
    """The borrowing ledger, newest first. Returned loans stay listed."""
    return list_borrowings(db, open_only=open_only)


# Error Handling

@app.exception_handler(LendingError)
def lending_error_handler(request: Request, exc: LendingError):
    content = {"status_code": exc.status_code, "message": exc.message}
    if exc.reason:
        content["reason"] = exc.reason
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
def exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return get_default_error_response()


def get_default_error_response(status_code=500, message="Internal Server Error"):
    return JSONResponse(
        status_code=status_code,
        content={"status_code": status_code, "message": message},
    )


if __name__ == "__main__":
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
