"""Domain models for catalog items."""
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


class LendingState(str, Enum):
    """Whether an item is on the shelf or checked out."""
    AVAILABLE = "Available"
    ISSUED = "Issued"


class Item(BaseModel):
    """A lendable catalog entry (a book).

    ``lending_state`` is only ever changed by the lending state machine
    through the store's conditional transition.

    Attributes:
        id: Unique, immutable identifier
        name: Book title
        author: Book author
        page_count: Number of pages (0 when unknown)
        price: Price (0 when unknown)
        lending_state: Current lending state
        created_at: Creation timestamp, set once
    """
    id: str
    name: str
    author: str
    page_count: int = Field(default=0, ge=0)
    price: float = Field(default=0, ge=0)
    lending_state: LendingState = LendingState.AVAILABLE
    created_at: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "id": "0b6f7a7e4c1d4a3f9e2b8c5d1a0f3e7b",
                "name": "Dune",
                "author": "Herbert",
                "page_count": 412,
                "price": 9.99,
                "lending_state": "Available",
                "created_at": "2024-10-15T09:30:00Z"
            }
        }


class BookRequest(BaseModel):
    """Body of ``POST /books``.

    Numeric fields accept anything; the catalog service coerces them.
    """
    book_name: Optional[str] = Field(default=None, alias="bookName")
    book_author: Optional[str] = Field(default=None, alias="bookAuthor")
    book_pages: Any = Field(default=None, alias="bookPages")
    book_price: Any = Field(default=None, alias="bookPrice")

    class Config:
        populate_by_name = True


class BookIdRequest(BaseModel):
    """Body of ``/issue``, ``/return`` and ``/delete``."""
    book_id: Optional[str] = Field(default=None, alias="bookId")

    class Config:
        populate_by_name = True
