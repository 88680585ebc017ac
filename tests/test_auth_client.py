"""Tests for the Nhost email/password AuthClient."""

import time
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from botchat.auth import AuthClient, AuthError, AuthSession
from botchat.core.graphql import BackendError
from botchat.core.models import AuthStatus
from botchat.utils.persistent_auth import get_persistent_auth, store_persistent_auth

AUTH_URL = "https://proj.auth.local.nhost.run/v1"
DEVICE = "d" * 32


def _response(body, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.json.return_value = body
    response.content = b"{}" if body is not None else b""
    return response


def _mock_http(mock_client, *responses):
    mock_instance = AsyncMock()
    mock_client.return_value.__aenter__.return_value = mock_instance
    mock_instance.post.side_effect = list(responses)
    return mock_instance


class TestStatus:
    def test_starts_unauthenticated(self):
        assert AuthClient(AUTH_URL).status is AuthStatus.UNAUTHENTICATED

    def test_restoring_reports_loading(self):
        client = AuthClient(AUTH_URL)
        client.restoring = True
        assert client.status is AuthStatus.LOADING


class TestSignIn:
    @pytest.mark.asyncio
    async def test_sign_in_adopts_and_persists_session(self, session_payload):
        client = AuthClient(AUTH_URL, device_key=DEVICE)
        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = _mock_http(mock_client, _response({"session": session_payload, "mfa": None}))

            session = await client.sign_in("ada@example.com", "s3cret")

        call = mock_instance.post.call_args
        assert call.args[0] == f"{AUTH_URL}/signin/email-password"
        assert call.kwargs["json"] == {"email": "ada@example.com", "password": "s3cret"}
        assert session.user.id == "user-1"
        assert client.status is AuthStatus.AUTHENTICATED
        assert client.user_id == "user-1"
        assert get_persistent_auth(DEVICE)["refresh_token"] == "refresh-1"

    @pytest.mark.asyncio
    async def test_rejected_credentials_raise_auth_error(self):
        client = AuthClient(AUTH_URL)
        with patch("httpx.AsyncClient") as mock_client:
            _mock_http(mock_client, _response(
                {"status": 401, "error": "invalid-email-password", "message": "Incorrect email or password"},
                status_code=401,
            ))

            with pytest.raises(AuthError) as exc_info:
                await client.sign_in("ada@example.com", "wrong")

        assert exc_info.value.message == "Incorrect email or password"
        assert exc_info.value.error == "invalid-email-password"
        assert client.status is AuthStatus.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_transport_failure_raises_backend_error(self):
        client = AuthClient(AUTH_URL)
        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_client.return_value.__aenter__.return_value = mock_instance
            mock_instance.post.side_effect = httpx.ConnectError("refused")

            with pytest.raises(BackendError) as exc_info:
                await client.sign_in("ada@example.com", "s3cret")

        assert not isinstance(exc_info.value, AuthError)


class TestSignUp:
    @pytest.mark.asyncio
    async def test_sign_up_with_session(self, session_payload):
        client = AuthClient(AUTH_URL, persist_session=False, device_key=DEVICE)
        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = _mock_http(mock_client, _response({"session": session_payload}))

            session = await client.sign_up("ada@example.com", "s3cret")

        assert mock_instance.post.call_args.args[0] == f"{AUTH_URL}/signup/email-password"
        assert session is not None
        assert client.status is AuthStatus.AUTHENTICATED
        assert get_persistent_auth(DEVICE) is None

    @pytest.mark.asyncio
    async def test_sign_up_pending_verification_returns_none(self):
        client = AuthClient(AUTH_URL)
        with patch("httpx.AsyncClient") as mock_client:
            _mock_http(mock_client, _response({"session": None}))

            session = await client.sign_up("ada@example.com", "s3cret")

        assert session is None
        assert client.status is AuthStatus.UNAUTHENTICATED


class TestSignOut:
    @pytest.mark.asyncio
    async def test_sign_out_revokes_and_clears(self, session_payload):
        client = AuthClient(AUTH_URL, device_key=DEVICE)
        client.session = AuthSession.model_validate(session_payload)
        store_persistent_auth(DEVICE, "ada@example.com", "refresh-1")

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = _mock_http(mock_client, _response(None))

            await client.sign_out()

        call = mock_instance.post.call_args
        assert call.args[0] == f"{AUTH_URL}/signout"
        assert call.kwargs["json"] == {"refreshToken": "refresh-1"}
        assert call.kwargs["headers"]["Authorization"] == "Bearer access-1"
        assert client.status is AuthStatus.UNAUTHENTICATED
        assert get_persistent_auth(DEVICE) is None

    @pytest.mark.asyncio
    async def test_remote_failure_still_signs_out_locally(self, session_payload):
        client = AuthClient(AUTH_URL)
        client.session = AuthSession.model_validate(session_payload)

        with patch("httpx.AsyncClient") as mock_client:
            _mock_http(mock_client, _response({"message": "boom"}, status_code=500))

            await client.sign_out()

        assert client.session is None


class TestRestoreAndRefresh:
    @pytest.mark.asyncio
    async def test_restore_exchanges_persisted_token(self, session_payload):
        store_persistent_auth(DEVICE, "ada@example.com", "refresh-old")
        client = AuthClient(AUTH_URL, device_key=DEVICE)

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = _mock_http(mock_client, _response(session_payload))

            restored = await client.restore()

        assert restored is True
        assert mock_instance.post.call_args.kwargs["json"] == {"refreshToken": "refresh-old"}
        assert client.status is AuthStatus.AUTHENTICATED
        assert client.restoring is False
        assert get_persistent_auth(DEVICE)["refresh_token"] == "refresh-1"

    @pytest.mark.asyncio
    async def test_rejected_token_is_discarded(self):
        store_persistent_auth(DEVICE, "ada@example.com", "refresh-revoked")
        client = AuthClient(AUTH_URL, device_key=DEVICE)

        with patch("httpx.AsyncClient") as mock_client:
            _mock_http(mock_client, _response({"message": "Invalid or expired refresh token"}, status_code=401))

            restored = await client.restore()

        assert restored is False
        assert client.status is AuthStatus.UNAUTHENTICATED
        assert get_persistent_auth(DEVICE) is None

    @pytest.mark.asyncio
    async def test_restore_without_stored_token_is_noop(self):
        client = AuthClient(AUTH_URL, device_key=DEVICE)
        with patch("httpx.AsyncClient") as mock_client:
            restored = await client.restore()

        assert restored is False
        mock_client.assert_not_called()

    @pytest.mark.asyncio
    async def test_ensure_fresh_refreshes_expiring_token(self, session_payload):
        client = AuthClient(AUTH_URL, persist_session=False)
        client.session = AuthSession.model_validate({**session_payload, "issued_at": time.time() - 890})
        refreshed = {**session_payload, "accessToken": "access-2"}

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = _mock_http(mock_client, _response(refreshed))

            token = await client.ensure_fresh(margin=60)

        assert token == "access-2"
        assert mock_instance.post.call_args.args[0] == f"{AUTH_URL}/token"

    @pytest.mark.asyncio
    async def test_ensure_fresh_keeps_valid_token(self, session_payload):
        client = AuthClient(AUTH_URL, persist_session=False)
        client.session = AuthSession.model_validate(session_payload)

        with patch("httpx.AsyncClient") as mock_client:
            token = await client.ensure_fresh(margin=60)

        assert token == "access-1"
        mock_client.assert_not_called()

    @pytest.mark.asyncio
    async def test_ensure_fresh_without_session(self):
        assert await AuthClient(AUTH_URL).ensure_fresh(margin=60) is None


class TestSessionIsolation:
    @pytest.mark.asyncio
    async def test_other_browser_does_not_restore_saved_session(self, session_payload):
        first = AuthClient(AUTH_URL, device_key="a" * 32)
        with patch("httpx.AsyncClient") as mock_client:
            _mock_http(mock_client, _response({"session": session_payload}))
            await first.sign_in("ada@example.com", "s3cret")

        second = AuthClient(AUTH_URL, device_key="b" * 32)
        with patch("httpx.AsyncClient") as mock_client:
            restored = await second.restore()

        assert restored is False
        mock_client.assert_not_called()
        assert second.status is AuthStatus.UNAUTHENTICATED
        assert second.user_id is None

    @pytest.mark.asyncio
    async def test_same_browser_restores_saved_session(self, session_payload):
        first = AuthClient(AUTH_URL, device_key=DEVICE)
        with patch("httpx.AsyncClient") as mock_client:
            _mock_http(mock_client, _response({"session": session_payload}))
            await first.sign_in("ada@example.com", "s3cret")

        reloaded = AuthClient(AUTH_URL, device_key=DEVICE)
        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = _mock_http(mock_client, _response(session_payload))
            restored = await reloaded.restore()

        assert restored is True
        assert mock_instance.post.call_args.kwargs["json"] == {"refreshToken": "refresh-1"}
        assert reloaded.user_id == "user-1"

    @pytest.mark.asyncio
    async def test_client_without_device_key_persists_nothing(self, session_payload, isolated_paths):
        client = AuthClient(AUTH_URL)
        with patch("httpx.AsyncClient") as mock_client:
            _mock_http(mock_client, _response({"session": session_payload}))
            await client.sign_in("ada@example.com", "s3cret")

        assert client.persists is False
        assert list(isolated_paths.glob("auth/auth_*.json")) == []
