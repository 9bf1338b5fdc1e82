import inspect
import itertools
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from .errors import AuthError
from .models import Session, User

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

AuthCallback = Callable[[str, Optional[Session]], Union[None, Awaitable[None]]]

# Refresh a little before the token actually expires.
EXPIRY_MARGIN = 30


class Subscription:
    """Handle returned by ``on_auth_state_change``; call ``unsubscribe`` to stop."""

    def __init__(self, auth: "AuthClient", key: int):
        self._auth = auth
        self.key = key

    def unsubscribe(self):
        self._auth._listeners.pop(self.key, None)


class AuthClient:
    """Email/password sessions against the hosted auth API (``/auth/v1``)."""

    def __init__(
        self,
        url: str,
        api_key: str,
        session_file: Optional[Path] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.auth_url = f"{url.rstrip('/')}/auth/v1"
        self.api_key = api_key
        self.session_file = Path(session_file) if session_file else None
        self.headers = {
            "apikey": api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "shelfkeeper/0.1",
        }
        self._client = httpx.AsyncClient(
            base_url=self.auth_url, headers=self.headers, transport=transport
        )
        self._session: Optional[Session] = None
        self._listeners: Dict[int, AuthCallback] = {}
        self._keys = itertools.count(1)

    # -- subscriptions -------------------------------------------------

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        key = next(self._keys)
        self._listeners[key] = callback
        return Subscription(self, key)

    async def _notify(self, event: str, session: Optional[Session]):
        logger.debug("Auth event %s", event)
        for callback in list(self._listeners.values()):
            result = callback(event, session)
            if inspect.isawaitable(result):
                await result

    def bind_store(self, store) -> Subscription:
        """Keep ``store``'s bearer token in step with the current session."""
        if self._session:
            store.set_access_token(self._session.access_token)

        def _sync(event: str, session: Optional[Session]):
            store.set_access_token(session.access_token if session else None)

        return self.on_auth_state_change(_sync)

    # -- session lifecycle ----------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        data = await self._post(
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = self._session_from(data)
        self._set_session(session)
        await self._notify(SIGNED_IN, session)
        return session

    async def refresh_session(self) -> Session:
        current = self._session or self._load_session()
        if not current or not current.refresh_token:
            raise AuthError("No refresh token available")
        data = await self._post(
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": current.refresh_token},
        )
        session = self._session_from(data)
        self._set_session(session)
        await self._notify(TOKEN_REFRESHED, session)
        return session

    async def sign_out(self):
        session = self._session or self._load_session()
        if session:
            try:
                await self._post("/logout", token=session.access_token)
            except AuthError as e:
                # The local session is dropped either way.
                logger.warning("Remote sign-out failed: %s", e)
        self._set_session(None)
        await self._notify(SIGNED_OUT, None)

    async def get_session(self) -> Optional[Session]:
        if self._session is None:
            self._session = self._load_session()
        session = self._session
        if session and session.expires_at and session.expires_at - EXPIRY_MARGIN < time.time():
            if not session.refresh_token:
                self._set_session(None)
                return None
            session = await self.refresh_session()
        return session

    async def get_user(self) -> Optional[User]:
        session = await self.get_session()
        if not session:
            return None
        try:
            resp = await self._client.get(
                "/user", headers={"Authorization": f"Bearer {session.access_token}"}
            )
        except httpx.HTTPError as e:
            raise AuthError(f"Could not reach auth service: {e}") from e
        if resp.status_code >= 400:
            raise self._error_from(resp)
        return User.model_validate(resp.json())

    # -- helpers ---------------------------------------------------------

    def _set_session(self, session: Optional[Session]):
        self._session = session
        if not self.session_file:
            return
        if session is None:
            self.session_file.unlink(missing_ok=True)
        else:
            self.session_file.write_text(session.model_dump_json(), encoding="utf-8")

    def _load_session(self) -> Optional[Session]:
        if not self.session_file or not self.session_file.exists():
            return None
        try:
            return Session.model_validate_json(self.session_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.session_file, e)
            return None

    @staticmethod
    def _session_from(data: Dict[str, Any]) -> Session:
        if not data.get("access_token") or not data.get("user"):
            raise AuthError("Auth response did not contain a session")
        expires_at = data.get("expires_at")
        if expires_at is None and data.get("expires_in"):
            expires_at = int(time.time()) + int(data["expires_in"])
        return Session(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type") or "bearer",
            expires_at=expires_at,
            user=User.model_validate(data["user"]),
        )

    async def _post(self, path: str, params=None, json=None, token: Optional[str] = None) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {token or self.api_key}"}
        try:
            resp = await self._client.post(path, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise AuthError(f"Could not reach auth service: {e}") from e
        if resp.status_code >= 400:
            raise self._error_from(resp)
        return resp.json() if resp.content else {}

    @staticmethod
    def _error_from(resp: httpx.Response) -> AuthError:
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        message = (
            payload.get("error_description")
            or payload.get("msg")
            or payload.get("message")
            or payload.get("error")
            or resp.text
            or f"Auth request failed with status {resp.status_code}"
        )
        return AuthError(message, status_code=resp.status_code)

    async def aclose(self):
        await self._client.aclose()
