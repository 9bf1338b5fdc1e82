from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, field_validator

Shelf = Literal["to-read", "reading", "read"]
SHELVES = ("to-read", "reading", "read")

Rating = Optional[Union[int, float]]


def coerce_rating(value):
    """Empty or zero ratings are stored as unset, anything else as a number."""
    if not value:
        return None
    number = float(value)
    if not 0 <= number <= 5:
        raise ValueError("ratings run from 0 to 5")
    return int(number) if number.is_integer() else number


class User(BaseModel):
    id: str
    email: Optional[str] = None


class Session(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[int] = None
    user: User


class BookInput(BaseModel):
    title: str
    author: str
    pages: Optional[int] = None
    shelf: Optional[Shelf] = None
    rating: Rating = None
    spice_rating: Rating = None
    form: Optional[str] = None
    note: Optional[str] = None
    tags: List[str] = []

    @field_validator("rating", "spice_rating", mode="before")
    @classmethod
    def _coerce_rating(cls, value):
        return coerce_rating(value)

    @field_validator("pages", mode="before")
    @classmethod
    def _blank_pages(cls, value):
        return value or None

    @field_validator("tags", mode="before")
    @classmethod
    def _no_tags(cls, value):
        return value or []


class BookUpdate(BaseModel):
    id: str
    shelf: Optional[Shelf] = None
    rating: Rating = None
    spice_rating: Rating = None
    form: Optional[str] = None
    note: Optional[str] = None
    tags: List[str] = []

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value)

    @field_validator("rating", "spice_rating", mode="before")
    @classmethod
    def _coerce_rating(cls, value):
        return coerce_rating(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _no_tags(cls, value):
        return value or []


class LibraryEntry(BaseModel):
    """A user's copy of a book flattened together with the shared book row."""

    id: str
    book_id: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    pages: Optional[int] = None
    shelf: Optional[str] = None
    rating: Rating = None
    spice_rating: Rating = None
    form: Optional[str] = None
    note: Optional[str] = None
    tags: List[str] = []
    inserted_at: Optional[datetime] = None

    @field_validator("id", "book_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        return None if value is None else str(value)
