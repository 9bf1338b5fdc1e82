"""In-memory stand-ins for the auth service and the table API."""

import asyncio
import copy
import itertools
from datetime import datetime, timedelta

import pytest

from shelfkeeper.errors import StoreError
from shelfkeeper.library import LibraryClient
from shelfkeeper.models import Session, User

UNIQUE = {
    "user_books": ("user_id", "book_id"),
    "tags": ("user_id", "name"),
    "user_book_tags": ("user_book_id", "tag_id"),
}

ALICE = User(id="user-alice", email="alice@example.com")
BOB = User(id="user-bob", email="bob@example.com")


def run(coro):
    return asyncio.run(coro)


class FakeQuery:
    def __init__(self, store, table):
        self.store = store
        self.table = table
        self.method = "GET"
        self.columns = None
        self.body = None
        self.filters = []
        self.order_by = None

    def select(self, columns="*"):
        self.columns = columns
        return self

    def insert(self, rows):
        self.method = "POST"
        self.body = rows if isinstance(rows, list) else [rows]
        return self

    def update(self, values):
        self.method = "PATCH"
        self.body = values
        return self

    def delete(self):
        self.method = "DELETE"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, count):
        return self

    def _matches(self, row):
        return all(str(row.get(col)) == str(value) for col, value in self.filters)

    async def execute(self):
        self.store.calls.append((self.table, self.method, list(self.filters)))
        if (self.table, self.method) in self.store.failing:
            raise StoreError(f"{self.method} {self.table} rejected", status_code=500)

        rows = self.store.tables[self.table]
        if self.method == "GET":
            found = [copy.deepcopy(r) for r in rows if self._matches(r)]
            if self.order_by:
                column, desc = self.order_by
                found.sort(key=lambda r: r[column], reverse=desc)
            if "book:books" in (self.columns or ""):
                found = [self.store.embed(r) for r in found]
            return found
        if self.method == "POST":
            return [self.store.insert(self.table, row) for row in self.body]
        if self.method == "PATCH":
            changed = []
            for row in rows:
                if self._matches(row):
                    row.update(self.body)
                    changed.append(copy.deepcopy(row))
            return changed if self.columns is not None else []
        if self.method == "DELETE":
            self.store.delete(self.table, [r for r in rows if self._matches(r)])
            return []
        raise AssertionError(self.method)

    async def single(self):
        rows = await self.execute()
        if len(rows) != 1:
            raise StoreError("not single", code="PGRST116")
        return rows[0]

    async def maybe_single(self):
        rows = await self.execute()
        if len(rows) > 1:
            raise StoreError("not single", code="PGRST116")
        return rows[0] if rows else None


class FakeStore:
    def __init__(self):
        self.tables = {name: [] for name in ("books", "user_books", "tags", "user_book_tags")}
        self.calls = []
        self.failing = set()
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 1, 1, 12, 0, 0)

    def table(self, name):
        return FakeQuery(self, name)

    def fail(self, table, method):
        self.failing.add((table, method))

    @property
    def writes(self):
        return [call for call in self.calls if call[1] != "GET"]

    def insert(self, table, values):
        row = dict(values)
        keys = UNIQUE.get(table)
        if keys:
            for existing in self.tables[table]:
                if all(existing.get(k) == row.get(k) for k in keys):
                    raise StoreError("duplicate key value violates unique constraint", code="23505")
        if table != "user_book_tags":
            row["id"] = f"{table}-{next(self._ids)}"
        if table == "user_books":
            self._clock += timedelta(minutes=1)
            row["inserted_at"] = self._clock.isoformat()
        self.tables[table].append(row)
        return copy.deepcopy(row)

    def delete(self, table, doomed):
        self.tables[table] = [r for r in self.tables[table] if r not in doomed]
        if table == "user_books":
            gone = {r["id"] for r in doomed}
            self.tables["user_book_tags"] = [
                link for link in self.tables["user_book_tags"] if link["user_book_id"] not in gone
            ]

    def embed(self, entry):
        book = next((b for b in self.tables["books"] if b["id"] == entry["book_id"]), None)
        entry["book"] = (
            {k: book.get(k) for k in ("id", "title", "author", "pages")} if book else None
        )
        links = [l for l in self.tables["user_book_tags"] if l["user_book_id"] == entry["id"]]
        tags = {t["id"]: t for t in self.tables["tags"]}
        entry["user_book_tags"] = [
            {"tag": {"name": tags[l["tag_id"]]["name"], "id": l["tag_id"]}} for l in links
        ]
        return entry

    def entry(self, entry_id):
        return next(r for r in self.tables["user_books"] if r["id"] == entry_id)


class FakeSubscription:
    def __init__(self, auth, callback):
        self.auth = auth
        self.callback = callback

    def unsubscribe(self):
        self.auth.listeners.remove(self.callback)


class FakeAuth:
    def __init__(self, user=None):
        self.user = user
        self.error = None
        self.listeners = []
        self.session_checks = 0

    async def get_session(self):
        self.session_checks += 1
        if self.user is None:
            return None
        return Session(access_token=f"token-{self.user.id}", user=self.user)

    async def get_user(self):
        if self.error:
            raise self.error
        return self.user

    def on_auth_state_change(self, callback):
        self.listeners.append(callback)
        return FakeSubscription(self, callback)

    async def sign_in(self, user):
        self.user = user
        session = Session(access_token=f"token-{user.id}", user=user)
        for callback in list(self.listeners):
            await callback("SIGNED_IN", session)

    async def sign_out(self):
        self.user = None
        for callback in list(self.listeners):
            await callback("SIGNED_OUT", None)


class Recorder:
    """Callable that remembers its calls and answers with ``reply``."""

    def __init__(self, reply=None):
        self.reply = reply
        self.calls = []

    def __call__(self, message):
        self.calls.append(message)
        return self.reply


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def auth():
    return FakeAuth(user=ALICE)


@pytest.fixture
def alerts():
    return Recorder()


@pytest.fixture
def confirm():
    return Recorder(reply=True)


@pytest.fixture
def library(auth, store, confirm, alerts):
    client = LibraryClient(auth, store, confirm=confirm, alert=alerts)
    run(client.start())
    yield client
    client.close()
