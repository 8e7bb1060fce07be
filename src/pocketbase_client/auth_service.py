"""Auth collection operations.

An auth collection is a record collection with login endpoints on top, so
`AuthService` extends `RecordService`. Every call that returns a token
saves it, together with the auth record, into the client's `AuthStore`.

Usage:
    users = client.auth_collection("users")
    users.auth_with_password("ada@example.com", "secret").unwrap()
    client.before_send.append(users.refresh_hook(threshold=60))
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from .errors import Result
from .hooks import BeforeSendHook, auth_refresh_hook
from .models import AuthMethodsList, ExternalAuth, RecordAuthResponse
from .records import RecordService

if TYPE_CHECKING:
    from .auth import AuthStore
    from .cancellation import CancelToken

logger = logging.getLogger(__name__)


class AuthService(RecordService):
    """Login, token refresh, verification and email change for one auth collection."""

    def auth_path(self, action: str) -> str:
        return f"/api/collections/{quote(self.collection, safe='')}/{action}"

    def _external_auths_path(self, record_id: str, provider: str | None = None) -> str:
        path = f"{self.base_path(record_id)}/external-auths"
        return f"{path}/{quote(provider, safe='')}" if provider else path

    def _store(self, result: Result[Any]) -> Result[Any]:
        """Save a successful auth response into the client's auth store."""
        if result.is_success and result.value is not None:
            auth: RecordAuthResponse[Any] = result.value
            self._client.auth_store.save(auth.token, auth.record)
            record_id = getattr(auth.record, "id", None)
            logger.info(f"Authenticated {self.collection} record {record_id}")
        return result

    # =========================================================================
    # Authentication
    # =========================================================================

    def auth_with_password(
        self,
        identity: str,
        password: str,
        expand: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[RecordAuthResponse[Any]]:
        """Log in with an identity (email or username) and password."""
        return self._store(
            self._client.send(
                self.auth_path("auth-with-password"),
                "POST",
                query={"expand": expand},
                body={"identity": identity, "password": password},
                response_type=RecordAuthResponse[self.model],  # type: ignore[name-defined]
                cancel=cancel,
            )
        )

    async def auth_with_password_async(
        self,
        identity: str,
        password: str,
        expand: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[RecordAuthResponse[Any]]:
        return self._store(
            await self._client.send_async(
                self.auth_path("auth-with-password"),
                "POST",
                query={"expand": expand},
                body={"identity": identity, "password": password},
                response_type=RecordAuthResponse[self.model],  # type: ignore[name-defined]
                cancel=cancel,
            )
        )

    def auth_with_oauth2(
        self,
        provider: str,
        code: str,
        code_verifier: str,
        redirect_url: str,
        create_data: Mapping[str, Any] | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[RecordAuthResponse[Any]]:
        """Complete an OAuth2 code exchange.

        create_data fills the new record when the login creates one.
        """
        return self._store(
            self._client.send(
                self.auth_path("auth-with-oauth2"),
                "POST",
                body=_oauth2_body(provider, code, code_verifier, redirect_url, create_data),
                response_type=RecordAuthResponse[self.model],  # type: ignore[name-defined]
                cancel=cancel,
            )
        )

    async def auth_with_oauth2_async(
        self,
        provider: str,
        code: str,
        code_verifier: str,
        redirect_url: str,
        create_data: Mapping[str, Any] | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[RecordAuthResponse[Any]]:
        return self._store(
            await self._client.send_async(
                self.auth_path("auth-with-oauth2"),
                "POST",
                body=_oauth2_body(provider, code, code_verifier, redirect_url, create_data),
                response_type=RecordAuthResponse[self.model],  # type: ignore[name-defined]
                cancel=cancel,
            )
        )

    def auth_refresh(
        self, expand: str | None = None, *, cancel: CancelToken | None = None
    ) -> Result[RecordAuthResponse[Any]]:
        """Exchange the current (still valid) token for a fresh one."""
        return self._store(
            self._client.send(
                self.auth_path("auth-refresh"),
                "POST",
                query={"expand": expand},
                response_type=RecordAuthResponse[self.model],  # type: ignore[name-defined]
                cancel=cancel,
            )
        )

    async def auth_refresh_async(
        self, expand: str | None = None, *, cancel: CancelToken | None = None
    ) -> Result[RecordAuthResponse[Any]]:
        return self._store(
            await self._client.send_async(
                self.auth_path("auth-refresh"),
                "POST",
                query={"expand": expand},
                response_type=RecordAuthResponse[self.model],  # type: ignore[name-defined]
                cancel=cancel,
            )
        )

    def refresh_hook(self, threshold: float = 0.0) -> BeforeSendHook:
        """Pre-send hook renewing the token through `auth_refresh`.

        The refresh fires once the token expires within threshold seconds.
        It is a blocking call, also when the hook runs ahead of an async send.
        """
        return auth_refresh_hook(self._client.auth_store, self._refresh_store, threshold)

    def _refresh_store(self, auth_store: AuthStore) -> None:
        self.auth_refresh().unwrap()

    def list_auth_methods(
        self, *, cancel: CancelToken | None = None
    ) -> Result[AuthMethodsList]:
        return self._client.send(
            self.auth_path("auth-methods"), "GET", response_type=AuthMethodsList, cancel=cancel
        )

    async def list_auth_methods_async(
        self, *, cancel: CancelToken | None = None
    ) -> Result[AuthMethodsList]:
        return await self._client.send_async(
            self.auth_path("auth-methods"), "GET", response_type=AuthMethodsList, cancel=cancel
        )

    # =========================================================================
    # Verification, password reset, email change
    # =========================================================================

    def _post(self, action: str, body: dict[str, Any], cancel: CancelToken | None) -> Result[None]:
        return self._client.send(self.auth_path(action), "POST", body=body, cancel=cancel)

    async def _post_async(
        self, action: str, body: dict[str, Any], cancel: CancelToken | None
    ) -> Result[None]:
        return await self._client.send_async(
            self.auth_path(action), "POST", body=body, cancel=cancel
        )

    def request_verification(
        self, email: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return self._post("request-verification", {"email": email}, cancel)

    async def request_verification_async(
        self, email: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return await self._post_async("request-verification", {"email": email}, cancel)

    def confirm_verification(
        self, token: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return self._post("confirm-verification", {"token": token}, cancel)

    async def confirm_verification_async(
        self, token: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return await self._post_async("confirm-verification", {"token": token}, cancel)

    def request_password_reset(
        self, email: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return self._post("request-password-reset", {"email": email}, cancel)

    async def request_password_reset_async(
        self, email: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return await self._post_async("request-password-reset", {"email": email}, cancel)

    def confirm_password_reset(
        self,
        token: str,
        password: str,
        password_confirm: str,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[None]:
        body = {"token": token, "password": password, "passwordConfirm": password_confirm}
        return self._post("confirm-password-reset", body, cancel)

    async def confirm_password_reset_async(
        self,
        token: str,
        password: str,
        password_confirm: str,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[None]:
        body = {"token": token, "password": password, "passwordConfirm": password_confirm}
        return await self._post_async("confirm-password-reset", body, cancel)

    def request_email_change(
        self, new_email: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return self._post("request-email-change", {"newEmail": new_email}, cancel)

    async def request_email_change_async(
        self, new_email: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return await self._post_async("request-email-change", {"newEmail": new_email}, cancel)

    def confirm_email_change(
        self, token: str, password: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return self._post("confirm-email-change", {"token": token, "password": password}, cancel)

    async def confirm_email_change_async(
        self, token: str, password: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return await self._post_async(
            "confirm-email-change", {"token": token, "password": password}, cancel
        )

    # =========================================================================
    # Linked OAuth2 identities
    # =========================================================================

    def list_external_auths(
        self, record_id: str, *, cancel: CancelToken | None = None
    ) -> Result[list[ExternalAuth]]:
        return self._client.send(
            self._external_auths_path(record_id),
            "GET",
            response_type=list[ExternalAuth],
            cancel=cancel,
        )

    async def list_external_auths_async(
        self, record_id: str, *, cancel: CancelToken | None = None
    ) -> Result[list[ExternalAuth]]:
        return await self._client.send_async(
            self._external_auths_path(record_id),
            "GET",
            response_type=list[ExternalAuth],
            cancel=cancel,
        )

    def unlink_external_auth(
        self, record_id: str, provider: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return self._client.send(
            self._external_auths_path(record_id, provider), "DELETE", cancel=cancel
        )

    async def unlink_external_auth_async(
        self, record_id: str, provider: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return await self._client.send_async(
            self._external_auths_path(record_id, provider), "DELETE", cancel=cancel
        )


def _oauth2_body(
    provider: str,
    code: str,
    code_verifier: str,
    redirect_url: str,
    create_data: Mapping[str, Any] | None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "provider": provider,
        "code": code,
        "codeVerifier": code_verifier,
        "redirectUrl": redirect_url,
    }
    if create_data:
        body["createData"] = dict(create_data)
    return body
