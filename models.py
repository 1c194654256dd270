from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_books_stock_non_negative"),)

    code = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)
    stock = Column(Integer, nullable=False, default=1)

    borrowings = relationship("Borrowing", back_populates="book")

    def __repr__(self):
        return f"<Book(code='{self.code}', title='{self.title}', stock={self.stock})>"


class Member(Base):
    __tablename__ = "members"

    code = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    # Penalty expiry; the member may borrow again once this moment is reached.
    penalty = Column(DateTime, nullable=True)

    borrowings = relationship("Borrowing", back_populates="member")

    def is_penalized(self, now) -> bool:
        return self.penalty is not None and now < self.penalty

    def __repr__(self):
        return f"<Member(code='{self.code}', name='{self.name}', penalty={self.penalty})>"


class Borrowing(Base):
    __tablename__ = "borrowings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_code = Column(String, ForeignKey("members.code"), nullable=False)
    book_code = Column(String, ForeignKey("books.code"), nullable=False)
    borrowed_at = Column(DateTime, nullable=False)
    returned_at = Column(DateTime, nullable=True)

    member = relationship("Member", back_populates="borrowings")
    book = relationship("Book", back_populates="borrowings")

    @property
    def is_open(self) -> bool:
        return self.returned_at is None

    def __repr__(self):
        return (
            f"<Borrowing(id={self.id}, member_code='{self.member_code}', "
            f"book_code='{self.book_code}', returned_at={self.returned_at})>"
        )


# One open loan per (member, book); returned rows stay as history.
Index(
    "uq_borrowings_open_loan",
    Borrowing.member_code,
    Borrowing.book_code,
    unique=True,
    sqlite_where=Borrowing.returned_at.is_(None),
    postgresql_where=Borrowing.returned_at.is_(None),
)
Index("ix_borrowings_book_open", Borrowing.book_code, Borrowing.returned_at)
