import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from .auth import TOKEN_REFRESHED
from .errors import AuthError, StoreError
from .models import SHELVES, BookInput, BookUpdate, LibraryEntry, Session, User

logger = logging.getLogger(__name__)

ENTRY_COLUMNS = """
    id,
    shelf,
    rating,
    spice_rating,
    form,
    note,
    inserted_at,
    book:books (
        id,
        title,
        author,
        pages
    ),
    user_book_tags (
        tag:tags ( name, id )
    )
"""

DELETE_PROMPT = "Are you sure you want to delete this book?"

ConfirmCallback = Callable[[str], Union[bool, Awaitable[bool]]]


def flatten_entry(row: Dict[str, Any]) -> LibraryEntry:
    """Merge a ``user_books`` row with its embedded book and tag names."""
    book = row.get("book") or {}
    links = row.get("user_book_tags") or []
    return LibraryEntry(
        id=row["id"],
        book_id=book.get("id"),
        title=book.get("title"),
        author=book.get("author"),
        pages=book.get("pages"),
        shelf=row.get("shelf"),
        rating=row.get("rating"),
        spice_rating=row.get("spice_rating"),
        form=row.get("form"),
        note=row.get("note"),
        tags=[link["tag"]["name"] for link in links if link.get("tag")],
        inserted_at=row.get("inserted_at"),
    )


def distinct_tags(entries: Iterable[LibraryEntry]) -> List[str]:
    return sorted({tag for entry in entries for tag in entry.tags})


UNIQUE_VIOLATION = "23505"


def _decline(message: str) -> bool:
    logger.warning("No confirmation callback configured; declining: %s", message)
    return False


class LibraryClient:
    """The signed-in user's books, kept in step with the backend.

    Every mutation is scoped to the current user and followed by a full
    refetch, so ``books`` and ``tags`` always reflect what the backend
    holds rather than a locally patched copy.

    ``confirm`` is asked before deletes and may be a plain or async
    callable; ``alert`` receives validation messages meant for the user.
    """

    def __init__(
        self,
        auth,
        store,
        confirm: Optional[ConfirmCallback] = None,
        alert: Optional[Callable[[str], None]] = None,
    ):
        self.auth = auth
        self.store = store
        self.confirm = confirm or _decline
        self.alert = alert or logger.warning
        self.user: Optional[User] = None
        self.books: List[LibraryEntry] = []
        self.tags: List[str] = []
        # Tag names left without a link after the last add/update.
        self.tag_failures: List[str] = []
        self._subscription = None

    async def start(self):
        try:
            user = await self.auth.get_user()
        except AuthError as e:
            logger.error("Error reading current user: %s", e)
            user = None
        self._subscription = self.auth.on_auth_state_change(self._on_auth_change)
        await self._set_user(user)

    def close(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def __aenter__(self) -> "LibraryClient":
        await self.start()
        return self

    async def __aexit__(self, *exc):
        self.close()

    async def _on_auth_change(self, event: str, session: Optional[Session]):
        if event == TOKEN_REFRESHED and session and self.user and session.user.id == self.user.id:
            self.user = session.user
            return
        await self._set_user(session.user if session else None)

    async def _refresh_token(self):
        """Let the auth client renew an expiring session before the next request.

        A renewal notifies TOKEN_REFRESHED, which re-points the store's
        bearer token at the new session.
        """
        try:
            await self.auth.get_session()
        except AuthError as e:
            logger.error("Error refreshing session: %s", e)

    async def _set_user(self, user: Optional[User]):
        self.user = user
        if user:
            await self.fetch_all()
        else:
            self.books = []
            self.tags = []

    async def fetch_all(self):
        if not self.user:
            return
        await self._refresh_token()

        try:
            rows = await (
                self.store.table("user_books")
                .select(ENTRY_COLUMNS)
                .eq("user_id", self.user.id)
                .order("inserted_at", desc=True)
                .execute()
            )
            books = [flatten_entry(row) for row in rows]
        except (StoreError, ValidationError) as e:
            logger.error("Error fetching books: %s", e)
            return

        self.books = books
        self.tags = distinct_tags(books)

    async def add_book(self, new_book: Union[BookInput, Dict[str, Any]]) -> bool:
        if not self.user:
            return False

        book = self._validate(BookInput, new_book)
        if book is None:
            return False
        title, author = book.title.strip(), book.author.strip()
        if not title or not author:
            self.alert("Title and author are required!")
            return False

        await self._refresh_token()
        user_id = self.user.id
        self.tag_failures = []

        # 1. Reuse the shared book row when one already exists
        existing = None
        try:
            existing = await (
                self.store.table("books")
                .select("id")
                .eq("title", title)
                .eq("author", author)
                .maybe_single()
            )
        except StoreError as e:
            logger.warning("Error looking up book %r by %r: %s", title, author, e)

        if existing is None:
            try:
                existing = await (
                    self.store.table("books")
                    .insert({"title": title, "author": author, "pages": book.pages})
                    .single()
                )
            except StoreError as e:
                logger.error("Error inserting book: %s", e)
                return False

        # 2. The user's own copy
        try:
            entry = await (
                self.store.table("user_books")
                .insert({
                    "user_id": user_id,
                    "book_id": existing["id"],
                    "shelf": book.shelf or "to-read",
                    "rating": book.rating,
                    "spice_rating": book.spice_rating,
                    "form": book.form or "ebook",
                    "note": book.note or "",
                })
                .single()
            )
        except StoreError as e:
            logger.error("Error inserting user_books: %s", e)
            return False

        # 3. Tags
        self.tag_failures = await self._link_tags(entry["id"], book.tags)

        await self.fetch_all()
        return True

    async def update_book(self, updated_book: Union[BookUpdate, Dict[str, Any]]) -> bool:
        if not self.user:
            return False

        book = self._validate(BookUpdate, updated_book)
        if book is None:
            return False
        self.tag_failures = []

        values: Dict[str, Any] = {
            "rating": book.rating,
            "spice_rating": book.spice_rating,
        }
        for field in ("shelf", "form", "note"):
            value = getattr(book, field)
            if value is not None:
                values[field] = value

        await self._refresh_token()
        try:
            updated = await (
                self.store.table("user_books")
                .update(values)
                .eq("id", book.id)
                .eq("user_id", self.user.id)
                .select("id")
                .execute()
            )
        except StoreError as e:
            logger.error("Error updating user_books: %s", e)
            return False
        if not updated:
            logger.error("No entry %s owned by user %s to update", book.id, self.user.id)
            return False

        # Tags are replaced wholesale: clear the links, then relink
        try:
            await self.store.table("user_book_tags").delete().eq("user_book_id", book.id).execute()
        except StoreError as e:
            logger.warning("Error clearing tags of entry %s: %s", book.id, e)
        self.tag_failures = await self._link_tags(book.id, book.tags)

        await self.fetch_all()
        return True

    async def delete_book(self, entry_id: str) -> bool:
        if not self.user:
            return False

        confirmed = self.confirm(DELETE_PROMPT)
        if inspect.isawaitable(confirmed):
            confirmed = await confirmed
        if not confirmed:
            return False

        await self._refresh_token()
        try:
            await (
                self.store.table("user_books")
                .delete()
                .eq("id", entry_id)
                .eq("user_id", self.user.id)
                .execute()
            )
        except StoreError as e:
            logger.error("Error deleting book: %s", e)
            return False

        await self.fetch_all()
        return True

    async def move_to_shelf(self, entry_id: str, new_shelf: str) -> bool:
        if not self.user:
            return False

        if new_shelf not in SHELVES:
            self.alert(f"Unknown shelf {new_shelf!r}; expected one of {', '.join(SHELVES)}")
            return False

        await self._refresh_token()
        try:
            await (
                self.store.table("user_books")
                .update({"shelf": new_shelf})
                .eq("id", entry_id)
                .eq("user_id", self.user.id)
                .execute()
            )
        except StoreError as e:
            logger.error("Error moving book: %s", e)
            return False

        await self.fetch_all()
        return True

    async def _link_tags(self, entry_id: str, names: Iterable[str]) -> List[str]:
        """Look up or create each tag for the user, then link it to the entry.

        Failures are logged and collected rather than raised; the returned
        list holds the names that did not end up linked.
        """
        user_id = self.user.id
        failed = []
        for name in names:
            try:
                tag = await (
                    self.store.table("tags")
                    .select("id")
                    .eq("user_id", user_id)
                    .eq("name", name)
                    .maybe_single()
                )
                if tag is None:
                    tag = await (
                        self.store.table("tags")
                        .insert({"user_id": user_id, "name": name})
                        .single()
                    )
                await self._link(entry_id, tag["id"])
            except StoreError as e:
                logger.warning("Could not link tag %r to entry %s: %s", name, entry_id, e)
                failed.append(name)
        return failed

    async def _link(self, entry_id: str, tag_id: str):
        try:
            await (
                self.store.table("user_book_tags")
                .insert({"user_book_id": entry_id, "tag_id": tag_id})
                .execute()
            )
        except StoreError as e:
            if e.code != UNIQUE_VIOLATION:
                raise
            # Already linked, e.g. the same name given twice.
            logger.debug("Tag %s already linked to entry %s", tag_id, entry_id)

    def _validate(self, model, data):
        if isinstance(data, model):
            return data
        try:
            return model.model_validate(data)
        except ValidationError as e:
            self.alert(f"Invalid book details: {e}")
            return None
