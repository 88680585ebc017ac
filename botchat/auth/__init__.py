import time
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from botchat.core.graphql import BackendError
from botchat.core.models import AuthStatus, User
from botchat.infra.logger import logger as app_logger
from botchat.infra.metrics import record_latency_metric
from botchat.utils.persistent_auth import (
    clear_persistent_auth,
    get_persistent_auth,
    store_persistent_auth,
)

auth_logger = app_logger.getChild("Auth")


class AuthError(BackendError):
    """The auth provider rejected the request."""

    def __init__(self, message: str, status_code: int = 401, error: Optional[str] = None):
        self.error = error
        super().__init__(message, status_code=status_code)


class AuthSession(BaseModel):
    """Tokens and user issued by the auth provider."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    access_token_expires_in: int = Field(default=900, alias="accessTokenExpiresIn")
    refresh_token: str = Field(alias="refreshToken")
    user: User
    issued_at: float = Field(default_factory=time.time)

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.access_token_expires_in

    def expires_within(self, seconds: float) -> bool:
        return time.time() + seconds >= self.expires_at


class AuthClient:
    """Email/password client for the Nhost auth service.

    Holds the current session and exposes the three-valued status the
    session gate renders from. ``restoring`` counts as loading.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        persist_session: bool = True,
        device_key: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.persist_session = persist_session
        self.device_key = device_key
        self.session: Optional[AuthSession] = None
        self.restoring = False

    # Status

    @property
    def persists(self) -> bool:
        """Sessions are only saved for a browser that identified itself."""
        return self.persist_session and bool(self.device_key)

    @property
    def status(self) -> AuthStatus:
        if self.restoring:
            return AuthStatus.LOADING
        if self.session is not None:
            return AuthStatus.AUTHENTICATED
        return AuthStatus.UNAUTHENTICATED

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user.id if self.session else None

    @property
    def email(self) -> Optional[str]:
        return self.session.user.email if self.session else None

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else None

    # HTTP

    def _raise_for_response(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("message") if isinstance(body, dict) else None
        error = body.get("error") if isinstance(body, dict) else None
        raise AuthError(
            message or f"Auth request failed with status {response.status_code}",
            status_code=response.status_code,
            error=error,
        )

    async def _post(self, path: str, payload: Dict[str, Any], token: Optional[str] = None) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        started = time.perf_counter()
        status = "error"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}{path}", json=payload, headers=headers)
            self._raise_for_response(response)
            status = "success"
            if not response.content:
                return {}
            return response.json() or {}
        except httpx.TimeoutException as exc:
            raise BackendError("Auth request timed out", status_code=504) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Auth request failed: {exc}", status_code=503) from exc
        finally:
            elapsed = time.perf_counter() - started
            record_latency_metric(
                label="auth_request",
                stages=[("http", elapsed)],
                total_seconds=elapsed,
                extra={"path": path, "status": status},
            )

    def _adopt_session(self, body: Dict[str, Any]) -> Optional[AuthSession]:
        raw = body.get("session")
        if not raw:
            return None
        self.session = AuthSession.model_validate(raw)
        if self.persists:
            store_persistent_auth(self.device_key, self.session.user.email, self.session.refresh_token)
        return self.session

    # Provider operations

    async def sign_up(self, email: str, password: str) -> Optional[AuthSession]:
        """Register a user; returns None when e-mail verification is pending."""
        body = await self._post("/signup/email-password", {"email": email, "password": password})
        session = self._adopt_session(body)
        auth_logger.info("Sign-up for %s completed (session=%s)", email, bool(session))
        return session

    async def sign_in(self, email: str, password: str) -> Optional[AuthSession]:
        body = await self._post("/signin/email-password", {"email": email, "password": password})
        session = self._adopt_session(body)
        if session is None:
            raise AuthError("Sign-in did not return a session", status_code=401)
        auth_logger.success("Signed in user=%s", session.user.id)
        return session

    async def refresh(self) -> AuthSession:
        if self.session is None:
            raise AuthError("No session to refresh")
        return await self._exchange_refresh_token(self.session.refresh_token)

    async def _exchange_refresh_token(self, refresh_token: str) -> AuthSession:
        body = await self._post("/token", {"refreshToken": refresh_token})
        # /token answers with the session object itself
        session = self._adopt_session({"session": body})
        if session is None:
            raise AuthError("Token refresh did not return a session")
        auth_logger.debug("Access token refreshed for user=%s", session.user.id)
        return session

    async def sign_out(self) -> None:
        """Drop the local session first, then revoke the refresh token remotely."""
        session = self.session
        self.session = None
        if self.persists:
            clear_persistent_auth(self.device_key)
        if session is None:
            return
        try:
            await self._post(
                "/signout",
                {"refreshToken": session.refresh_token},
                token=session.access_token,
            )
        except BackendError as exc:
            auth_logger.warning("Remote sign-out failed for user=%s: %s", session.user.id, exc)
        auth_logger.info("Signed out user=%s", session.user.id)

    async def restore(self) -> bool:
        """Exchange a persisted refresh token for a session, if one exists."""
        if not self.persists:
            return False
        auth_data = get_persistent_auth(self.device_key)
        if not auth_data:
            return False

        self.restoring = True
        try:
            await self._exchange_refresh_token(auth_data["refresh_token"])
            auth_logger.info("Restored persistent session for %s", auth_data.get("email"))
            return True
        except AuthError as exc:
            auth_logger.warning("Persistent session rejected; clearing it: %s", exc)
            self.session = None
            clear_persistent_auth(self.device_key)
            return False
        except BackendError as exc:
            auth_logger.error("Could not restore persistent session: %s", exc)
            self.session = None
            return False
        finally:
            self.restoring = False

    async def ensure_fresh(self, margin: float) -> Optional[str]:
        """Return a usable access token, refreshing it when about to expire."""
        if self.session is None:
            return None
        if self.session.expires_within(margin):
            await self.refresh()
        return self.session.access_token
