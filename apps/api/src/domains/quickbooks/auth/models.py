# apps/api/src/domains/quickbooks/auth/models.py
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from src.domains.sync.models import Connection


class QBOAuthUrlResponse(BaseModel):
    """Response model for OAuth authorization URL generation."""

    auth_url: str = Field(..., description="Intuit OAuth authorization URL")
    expires_at: datetime = Field(..., description="When the state token expires")


class QBOCallbackParams(BaseModel):
    """Query parameters from the Intuit OAuth callback."""

    code: Optional[str] = Field(None, description="OAuth authorization code")
    state: Optional[str] = Field(None, description="JWT state token")
    realmId: Optional[str] = Field(None, description="QuickBooks company id")
    error: Optional[str] = Field(None, description="Error code if authorization failed")
    error_description: Optional[str] = Field(None, description="Error description")


class QBOStateTokenPayload(BaseModel):
    """JWT payload for OAuth state token."""

    csrf_token: str = Field(..., description="Random anti-forgery value")
    return_url: Optional[str] = Field(None, description="Where to send the user after")
    issued_at: datetime = Field(..., description="Token issue time")
    expires_at: datetime = Field(..., description="Token expiry time")


class QBOConnectionResponse(BaseModel):
    """Response model for a completed OAuth connection."""

    message: str = Field(..., description="Success message")
    connection_id: str = Field(..., description="Local connection id")
    realm_id: str = Field(..., description="QuickBooks company id")
    company_name: Optional[str] = Field(None, description="QuickBooks company name")
    connected_at: datetime = Field(..., description="When connection was established")
    return_url: Optional[str] = Field(None, description="Redirect target from state")


class QBOConnectionStatus(BaseModel):
    """Response model for QuickBooks connection status."""

    connection_id: str
    realm_id: str
    company_name: Optional[str] = None
    connected: bool = Field(..., description="Whether the connection is usable")
    expires_at: Optional[datetime] = Field(None, description="Access token expiry")
    refresh_expires_at: Optional[datetime] = Field(
        None, description="Refresh token expiry"
    )
    access_token_expired: bool = False
    refresh_token_expired: bool = False
    connected_at: Optional[datetime] = None
    disconnected_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None

    @classmethod
    def from_connection(cls, connection: Connection) -> "QBOConnectionStatus":
        now = datetime.now(timezone.utc)
        refresh_expired = bool(
            connection.refresh_expires_at and connection.refresh_expires_at <= now
        )
        return cls(
            connection_id=connection.id,
            realm_id=connection.realm_id,
            company_name=connection.company_name,
            connected=connection.is_connected and not refresh_expired,
            expires_at=connection.expires_at,
            refresh_expires_at=connection.refresh_expires_at,
            access_token_expired=bool(
                connection.expires_at and connection.expires_at <= now
            ),
            refresh_token_expired=refresh_expired,
            connected_at=connection.connected_at,
            disconnected_at=connection.disconnected_at,
            last_sync_at=connection.last_sync_at,
        )


class QBODisconnectResponse(BaseModel):
    """Response model for disconnection."""

    message: str = Field(..., description="Success message")
    connection_id: str = Field(..., description="Local connection id")
    disconnected_at: datetime = Field(..., description="When disconnection occurred")


class QBORefreshResponse(BaseModel):
    connection_id: str
    expires_at: datetime
    refresh_expires_at: Optional[datetime] = None


class QBOConnectionTestResponse(BaseModel):
    connection_id: str
    realm_id: str
    company_name: Optional[str] = None
    connected: bool
