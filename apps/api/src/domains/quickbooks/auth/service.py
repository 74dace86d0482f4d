# apps/api/src/domains/quickbooks/auth/service.py
import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
import jwt

from src.core.settings import settings
from src.domains.quickbooks.client import QuickBooksClient
from src.domains.quickbooks.types import QBOCredentials, QBOTokenResponse
from src.domains.sync.models import Connection
from src.domains.sync.repository import BaseSyncRepository
from src.shared.exceptions import (
    AuthExpiredError,
    BaseHTTPException,
    ConnectionNotFoundError,
    InternalError,
    NetworkError,
    OAuthStateError,
    RealmConflictError,
    RemoteHttpError,
    SyncValidationError,
)

from .models import (
    QBOAuthUrlResponse,
    QBOCallbackParams,
    QBOConnectionResponse,
    QBOConnectionStatus,
    QBOConnectionTestResponse,
    QBODisconnectResponse,
    QBOStateTokenPayload,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuickBooksAuthService:
    """
    Owns OAuth credential state for QuickBooks connections.

    One instance is shared by the whole application so that refreshes for a
    connection are single-flight: the refresh token rotates on every use, and
    two concurrent exchanges would invalidate each other.
    """

    def __init__(
        self,
        repository: BaseSyncRepository,
        client: Optional[QuickBooksClient] = None,
    ):
        self.repository = repository
        self.client = client or QuickBooksClient()
        self.client_id = settings.QBO_CLIENT_ID
        self.client_secret = settings.QBO_CLIENT_SECRET
        self.redirect_uri = (
            settings.QBO_REDIRECT_URI
            or f"{settings.APP_BASE_URL}/api/v1/qbo/auth/callback"
        )
        self.scopes = settings.QBO_SCOPES
        self.auth_url = settings.QBO_AUTH_URL
        self.token_url = settings.QBO_TOKEN_URL
        self.revoke_url = settings.QBO_REVOKE_URL
        self.refresh_threshold = timedelta(
            minutes=settings.TOKEN_REFRESH_THRESHOLD_MINUTES
        )
        self._refresh_locks: Dict[str, asyncio.Lock] = {}

    # Token lifecycle

    async def get_valid_access_token(self, connection_id: str) -> str:
        """
        Return an access token that is good for at least the refresh threshold.

        Raises:
            ConnectionNotFoundError: Unknown connection id
            AuthExpiredError: Connection is disconnected or its refresh token
                is no longer valid; the user has to reconnect
        """
        connection = await self._valid_connection(connection_id)
        return connection.access_token

    async def get_credentials(self, connection_id: str) -> QBOCredentials:
        connection = await self._valid_connection(connection_id)
        return QBOCredentials(
            access_token=connection.access_token, realm_id=connection.realm_id
        )

    async def refresh(self, connection_id: str) -> Connection:
        """Exchange the refresh token now, regardless of remaining lifetime."""
        return await self._refresh(connection_id, force=True)

    def needs_refresh(self, connection: Connection) -> bool:
        if not connection.access_token or not connection.expires_at:
            return True
        return connection.expires_at - utcnow() < self.refresh_threshold

    async def _valid_connection(self, connection_id: str) -> Connection:
        connection = await self._require_connection(connection_id)
        await self._ensure_usable(connection)

        if self.needs_refresh(connection):
            connection = await self._refresh(connection_id, force=False)
        return connection

    async def _refresh(self, connection_id: str, force: bool) -> Connection:
        lock = self._refresh_locks.setdefault(connection_id, asyncio.Lock())
        async with lock:
            # Re-read under the lock; a waiter may find the work already done.
            connection = await self._require_connection(connection_id)
            await self._ensure_usable(connection)

            if not force and not self.needs_refresh(connection):
                logger.debug(
                    f"Connection {connection_id} already refreshed by another caller"
                )
                return connection

            return await self._exchange_refresh_token(connection)

    async def _exchange_refresh_token(self, connection: Connection) -> Connection:
        logger.info(f"Refreshing QuickBooks access token for connection {connection.id}")

        token_response = await self._request_tokens(
            {
                "grant_type": "refresh_token",
                "refresh_token": connection.refresh_token,
            },
            connection_id=connection.id,
        )

        now = utcnow()
        expires_at = self._access_expiry(token_response, now)
        refresh_expires_at = self._refresh_expiry(token_response, now)

        swapped = await self.repository.swap_credentials(
            connection.id,
            expected_refresh_token=connection.refresh_token,
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token,
            expires_at=expires_at,
            refresh_expires_at=refresh_expires_at,
        )
        if not swapped:
            logger.warning(
                f"Credentials for connection {connection.id} changed during refresh; "
                "keeping the stored pair"
            )
            return await self._require_connection(connection.id)

        logger.info(
            f"Refreshed access token for connection {connection.id}, "
            f"expires at {expires_at.isoformat()}"
        )
        return connection.model_copy(
            update={
                "access_token": token_response.access_token,
                "refresh_token": token_response.refresh_token,
                "expires_at": expires_at,
                "refresh_expires_at": refresh_expires_at,
            }
        )

    def _access_expiry(self, token_response: QBOTokenResponse, now: datetime) -> datetime:
        lifetime = token_response.expires_in or settings.DEFAULT_ACCESS_TOKEN_LIFETIME_SECONDS
        return now + timedelta(seconds=lifetime)

    def _refresh_expiry(self, token_response: QBOTokenResponse, now: datetime) -> datetime:
        lifetime = token_response.refresh_lifetime_seconds
        if lifetime:
            return now + timedelta(seconds=lifetime)

        logger.warning(
            "Token response did not include a refresh token lifetime; assuming "
            f"{settings.DEFAULT_REFRESH_TOKEN_LIFETIME_DAYS} days"
        )
        return now + timedelta(days=settings.DEFAULT_REFRESH_TOKEN_LIFETIME_DAYS)

    async def _ensure_usable(self, connection: Connection) -> None:
        if not connection.is_connected or not connection.refresh_token:
            raise AuthExpiredError(
                f"QuickBooks connection {connection.id} is disconnected. "
                "Please reconnect."
            )

        now = utcnow()
        if connection.refresh_expires_at and connection.refresh_expires_at <= now:
            logger.warning(
                f"Refresh token for connection {connection.id} expired at "
                f"{connection.refresh_expires_at.isoformat()}, disconnecting"
            )
            await self.repository.mark_disconnected(connection.id, now)
            raise AuthExpiredError(
                "QuickBooks refresh token has expired. Please reconnect."
            )

    async def _require_connection(self, connection_id: str) -> Connection:
        connection = await self.repository.get_connection(connection_id)
        if not connection:
            raise ConnectionNotFoundError(
                f"QuickBooks connection {connection_id} not found"
            )
        return connection

    async def _request_tokens(
        self, data: Dict[str, Any], connection_id: Optional[str] = None
    ) -> QBOTokenResponse:
        """
        Call the Intuit token endpoint with HTTP Basic client credentials.

        A 400/401 means the grant itself was rejected. For a refresh grant that
        disconnects the connection.
        """
        if not self.client_id or not self.client_secret:
            raise InternalError("QuickBooks OAuth client is not configured")

        async with httpx.AsyncClient(timeout=settings.QBO_REQUEST_TIMEOUT) as client:
            try:
                response = await client.post(
                    self.token_url,
                    data=data,
                    auth=(self.client_id, self.client_secret),
                    headers={
                        "Accept": "application/json",
                        "Content-Type": "application/x-www-form-urlencoded",
                    },
                )
                response.raise_for_status()
                return QBOTokenResponse(**response.json())
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code in (400, 401):
                    if connection_id:
                        logger.error(
                            f"Refresh token rejected for connection {connection_id} "
                            f"(HTTP {status_code}), disconnecting"
                        )
                        await self.repository.mark_disconnected(connection_id, utcnow())
                        raise AuthExpiredError(
                            "Invalid or expired refresh token. Please reconnect."
                        )
                    raise AuthExpiredError(
                        f"Authorization code exchange failed: {e.response.text}"
                    )
                raise RemoteHttpError(status_code, e.response.text)
            except httpx.RequestError as e:
                raise NetworkError(f"Token request failed: {e}")

    # OAuth connection flow

    def get_authorization_url(self, return_url: Optional[str] = None) -> QBOAuthUrlResponse:
        """Build the Intuit consent URL with a signed, short-lived state token."""
        if not self.client_id:
            raise InternalError("QuickBooks OAuth client is not configured")

        expires_at = utcnow() + timedelta(minutes=settings.OAUTH_STATE_TTL_MINUTES)
        state_token = self._generate_state_token(return_url, expires_at)

        auth_params = {
            "client_id": self.client_id,
            "scope": self.scopes,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "state": state_token,
        }
        return QBOAuthUrlResponse(
            auth_url=f"{self.auth_url}?{urlencode(auth_params)}",
            expires_at=expires_at,
        )

    async def complete_connection(
        self, callback_params: QBOCallbackParams
    ) -> QBOConnectionResponse:
        """
        Finish the OAuth flow: validate state, exchange the code and store the
        connection for the realm.

        Raises:
            SyncValidationError: Intuit reported an error or parameters are missing
            OAuthStateError: State token invalid or expired
            RealmConflictError: The realm already has an active connection
        """
        if callback_params.error:
            error_desc = callback_params.error_description or callback_params.error
            raise SyncValidationError(f"OAuth authorization failed: {error_desc}")

        if not callback_params.code or not callback_params.state or not callback_params.realmId:
            raise SyncValidationError("Missing required OAuth parameters")

        state_payload = self._validate_state_token(callback_params.state)
        realm_id = callback_params.realmId

        existing = await self.repository.get_connection_by_realm(realm_id)
        if existing and existing.is_connected:
            raise RealmConflictError(
                f"QuickBooks company {realm_id} is already connected. "
                "Disconnect it before connecting again."
            )

        token_response = await self._request_tokens(
            {
                "grant_type": "authorization_code",
                "code": callback_params.code,
                "redirect_uri": self.redirect_uri,
            }
        )

        now = utcnow()
        company_name = await self._fetch_company_name(
            QBOCredentials(access_token=token_response.access_token, realm_id=realm_id)
        )

        connection = await self.repository.save_connection(
            realm_id,
            {
                "companyName": company_name,
                "accessToken": token_response.access_token,
                "refreshToken": token_response.refresh_token,
                "expiresAt": self._access_expiry(token_response, now),
                "refreshExpiresAt": self._refresh_expiry(token_response, now),
                "isConnected": True,
                "connectedAt": now,
                "disconnectedAt": None,
            },
        )
        logger.info(f"Connected QuickBooks company {realm_id} as {connection.id}")

        return QBOConnectionResponse(
            message="QuickBooks connection established successfully",
            connection_id=connection.id,
            realm_id=realm_id,
            company_name=company_name,
            connected_at=now,
            return_url=state_payload.return_url,
        )

    async def _fetch_company_name(self, credentials: QBOCredentials) -> str:
        try:
            company_info = await self.client.get_company_info(credentials)
        except BaseHTTPException as e:
            logger.warning(
                f"Could not read company info for realm {credentials.realm_id}: {e}"
            )
            company_info = {}
        return company_info.get("CompanyName") or f"Company-{credentials.realm_id}"

    async def disconnect(self, connection_id: str) -> QBODisconnectResponse:
        """Revoke the refresh token (best effort) and mark the connection disconnected."""
        connection = await self._require_connection(connection_id)

        if connection.refresh_token and self.client_id and self.client_secret:
            await self._revoke_token(connection)

        disconnected_at = utcnow()
        await self.repository.mark_disconnected(
            connection.id, disconnected_at, clear_tokens=True
        )
        self._refresh_locks.pop(connection.id, None)
        logger.info(f"Disconnected QuickBooks connection {connection.id}")

        return QBODisconnectResponse(
            message="QuickBooks connection disconnected successfully",
            connection_id=connection.id,
            disconnected_at=disconnected_at,
        )

    async def _revoke_token(self, connection: Connection) -> None:
        async with httpx.AsyncClient(timeout=settings.QBO_REQUEST_TIMEOUT) as client:
            try:
                response = await client.post(
                    self.revoke_url,
                    json={"token": connection.refresh_token},
                    auth=(self.client_id, self.client_secret),
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                # Disconnection still succeeds locally
                logger.warning(
                    f"Failed to revoke QuickBooks token for {connection.id}: {e}"
                )

    async def get_connection_status(self, connection_id: str) -> QBOConnectionStatus:
        connection = await self._require_connection(connection_id)
        return QBOConnectionStatus.from_connection(connection)

    async def list_active_connections(self) -> List[QBOConnectionStatus]:
        connections = await self.repository.list_connected()
        return [QBOConnectionStatus.from_connection(c) for c in connections]

    async def test_connection(self, connection_id: str) -> QBOConnectionTestResponse:
        """Make a live CompanyInfo call with a valid token."""
        credentials = await self.get_credentials(connection_id)
        company_info = await self.client.get_company_info(credentials)
        return QBOConnectionTestResponse(
            connection_id=connection_id,
            realm_id=credentials.realm_id,
            company_name=company_info.get("CompanyName"),
            connected=True,
        )

    def _generate_state_token(
        self, return_url: Optional[str], expires_at: datetime
    ) -> str:
        """Generate JWT state token for OAuth flow."""
        if not settings.JWT_SECRET:
            raise InternalError("JWT secret not configured")

        payload = QBOStateTokenPayload(
            csrf_token=secrets.token_urlsafe(32),
            return_url=return_url,
            issued_at=utcnow(),
            expires_at=expires_at,
        )
        return jwt.encode(
            payload.model_dump(mode="json"),
            settings.JWT_SECRET,
            algorithm="HS256",
        )

    def _validate_state_token(self, token: str) -> QBOStateTokenPayload:
        """Validate and decode JWT state token."""
        if not settings.JWT_SECRET:
            raise InternalError("JWT secret not configured")

        try:
            payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            raise OAuthStateError(f"Invalid OAuth state token: {e}")

        state_payload = QBOStateTokenPayload(**payload)
        if utcnow() > state_payload.expires_at:
            raise OAuthStateError("OAuth session expired")
        return state_payload
