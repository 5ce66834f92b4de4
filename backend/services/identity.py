"""Identity provider: sign-in, sign-out and session lookup.

SupabaseIdentity wraps the hosted GoTrue auth API. DevIdentity stands in for
it when auth is bypassed for local development.
"""

import logging
from collections.abc import Callable
from typing import Any

import httpx

from models import AuthSession, User

logger = logging.getLogger("kincanvas.services.identity")

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
USER_UPDATED = "USER_UPDATED"
PASSWORD_RECOVERY = "PASSWORD_RECOVERY"

AuthListener = Callable[[str, User | None], None]


class AuthError(Exception):
    """The identity provider refused a request."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class IdentityProvider:
    """Base class holding the session-change listeners."""

    def __init__(self):
        self._listeners: list[AuthListener] = []

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, user: User | None) -> None:
        logger.debug(f"Auth event {event} for {user.id if user else 'anonymous'}")
        for listener in list(self._listeners):
            listener(event, user)

    async def get_current_user(self, access_token: str | None) -> User | None:
        raise NotImplementedError

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        raise NotImplementedError

    async def sign_in_with_link(self, email: str, redirect_to: str) -> None:
        raise NotImplementedError

    async def exchange_code(self, code: str, code_verifier: str | None = None) -> AuthSession:
        raise NotImplementedError

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        raise NotImplementedError

    async def update_password(self, access_token: str, password: str) -> User:
        raise NotImplementedError

    async def sign_out(self, access_token: str) -> None:
        raise NotImplementedError


# ============================================================================
# Supabase (GoTrue over HTTP)
# ============================================================================

class SupabaseIdentity(IdentityProvider):
    """GoTrue client for a Supabase project."""

    def __init__(self, url: str, api_key: str, client: httpx.AsyncClient | None = None):
        super().__init__()
        self.auth_url = f"{url.rstrip('/')}/auth/v1"
        self.api_key = api_key
        self.client = client or httpx.AsyncClient()

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str | None = None,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
        }
        try:
            response = await self.client.request(
                method, f"{self.auth_url}/{path}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"Auth request {path} failed: {e}")
            raise AuthError(str(e)) from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            message = (
                body.get("error_description")
                or body.get("msg")
                or body.get("message")
                or f"HTTP {response.status_code}"
            )
            logger.warning(f"Auth request {path} rejected ({response.status_code}): {message}")
            raise AuthError(message, response.status_code)

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _user(data: dict[str, Any]) -> User:
        return User(id=data["id"], email=data.get("email"))

    def _session(self, data: dict[str, Any]) -> AuthSession:
        return AuthSession(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
            user=self._user(data["user"]),
        )

    async def get_current_user(self, access_token):
        if not access_token:
            return None
        try:
            data = await self._request("GET", "user", access_token=access_token)
        except AuthError as e:
            logger.info(f"Session lookup failed: {e.message}")
            return None
        return self._user(data)

    async def sign_in_with_password(self, email, password):
        data = await self._request(
            "POST", "token", params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = self._session(data)
        self._emit(SIGNED_IN, session.user)
        return session

    async def sign_in_with_link(self, email, redirect_to):
        logger.info(f"Sending magic link to {email}")
        await self._request(
            "POST", "otp", params={"redirect_to": redirect_to},
            json={"email": email, "create_user": True},
        )

    async def exchange_code(self, code, code_verifier=None):
        data = await self._request(
            "POST", "token", params={"grant_type": "pkce"},
            json={"auth_code": code, "code_verifier": code_verifier or ""},
        )
        session = self._session(data)
        self._emit(SIGNED_IN, session.user)
        return session

    async def reset_password_for_email(self, email, redirect_to):
        logger.info(f"Sending password recovery link to {email}")
        await self._request(
            "POST", "recover", params={"redirect_to": redirect_to}, json={"email": email}
        )
        self._emit(PASSWORD_RECOVERY, None)

    async def update_password(self, access_token, password):
        data = await self._request(
            "PUT", "user", access_token=access_token, json={"password": password}
        )
        user = self._user(data)
        self._emit(USER_UPDATED, user)
        return user

    async def sign_out(self, access_token):
        user = await self.get_current_user(access_token)
        await self._request("POST", "logout", access_token=access_token)
        self._emit(SIGNED_OUT, user)


# ============================================================================
# Dev bypass
# ============================================================================

DEV_USER = User(id="dev-user-123", email="dev@localhost")
DEV_TOKEN = "dev-token"


class DevIdentity(IdentityProvider):
    """Treats every request as the same local user."""

    async def get_current_user(self, access_token):
        return DEV_USER

    async def sign_in_with_password(self, email, password):
        self._emit(SIGNED_IN, DEV_USER)
        return AuthSession(access_token=DEV_TOKEN, user=DEV_USER)

    async def sign_in_with_link(self, email, redirect_to):
        logger.info(f"Dev mode: skipping magic link for {email}")

    async def exchange_code(self, code, code_verifier=None):
        return await self.sign_in_with_password("", "")

    async def reset_password_for_email(self, email, redirect_to):
        logger.info(f"Dev mode: skipping password recovery for {email}")

    async def update_password(self, access_token, password):
        self._emit(USER_UPDATED, DEV_USER)
        return DEV_USER

    async def sign_out(self, access_token):
        self._emit(SIGNED_OUT, DEV_USER)
