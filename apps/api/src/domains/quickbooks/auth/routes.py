# apps/api/src/domains/quickbooks/auth/routes.py
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from src.core.settings import settings
from src.domains.quickbooks.auth.models import QBOCallbackParams, QBORefreshResponse
from src.domains.quickbooks.auth.service import QuickBooksAuthService
from src.domains.sync.dependencies import get_auth_service
from src.shared.exceptions import BaseHTTPException
from src.shared.responses import success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/qbo/auth", tags=["QuickBooks Auth"])


class ConnectionRequest(BaseModel):
    connectionId: str = Field(..., min_length=1, description="Local connection id")


@router.get("/connect", operation_id="getQuickBooksAuthUrl")
async def connect(
    return_url: Optional[str] = Query(None, alias="returnUrl"),
    auth_service: QuickBooksAuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Start the OAuth flow by returning the Intuit consent URL."""
    auth_url = auth_service.get_authorization_url(return_url)
    return success_response("Authorization URL generated", auth_url)


@router.get("/callback", operation_id="quickBooksOAuthCallback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    realm_id: Optional[str] = Query(None, alias="realmId"),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    auth_service: QuickBooksAuthService = Depends(get_auth_service),
) -> RedirectResponse:
    """
    Handle the Intuit redirect and send the user back to the frontend.

    Failures are reported to the frontend as query parameters rather than as
    an error response, since the browser is mid-redirect.
    """
    callback_params = QBOCallbackParams(
        code=code,
        state=state,
        realmId=realm_id,
        error=error,
        error_description=error_description,
    )

    try:
        result = await auth_service.complete_connection(callback_params)
    except BaseHTTPException as e:
        logger.warning(f"QuickBooks OAuth callback failed: [{e.error_code}] {e.message}")
        query = urlencode({"error": e.error_code, "message": e.message})
        return RedirectResponse(
            url=f"{settings.FRONTEND_URL}/oauth-error?{query}", status_code=302
        )

    query = urlencode(
        {
            "connectionId": result.connection_id,
            "realmId": result.realm_id,
            "companyName": result.company_name or "",
        }
    )
    base_url = result.return_url or f"{settings.FRONTEND_URL}/oauth-success"
    return RedirectResponse(url=f"{base_url}?{query}", status_code=302)


@router.post("/refresh", operation_id="refreshQuickBooksToken")
async def refresh_token(
    request: ConnectionRequest = Body(...),
    auth_service: QuickBooksAuthService = Depends(get_auth_service),
) -> JSONResponse:
    connection = await auth_service.refresh(request.connectionId)
    return success_response(
        "Token refreshed successfully",
        QBORefreshResponse(
            connection_id=connection.id,
            expires_at=connection.expires_at,
            refresh_expires_at=connection.refresh_expires_at,
        ),
    )


@router.post("/disconnect", operation_id="disconnectQuickBooks")
async def disconnect(
    request: ConnectionRequest = Body(...),
    auth_service: QuickBooksAuthService = Depends(get_auth_service),
) -> JSONResponse:
    result = await auth_service.disconnect(request.connectionId)
    return success_response(result.message, result)


@router.get("/status/{connection_id}", operation_id="getQuickBooksConnectionStatus")
async def connection_status(
    connection_id: str,
    auth_service: QuickBooksAuthService = Depends(get_auth_service),
) -> JSONResponse:
    result = await auth_service.get_connection_status(connection_id)
    return success_response("Connection status retrieved", result)


@router.get("/connections", operation_id="listQuickBooksConnections")
async def list_connections(
    auth_service: QuickBooksAuthService = Depends(get_auth_service),
) -> JSONResponse:
    connections = await auth_service.list_active_connections()
    return success_response(f"Found {len(connections)} active connections", connections)


@router.post("/test/{connection_id}", operation_id="testQuickBooksConnection")
async def test_connection(
    connection_id: str,
    auth_service: QuickBooksAuthService = Depends(get_auth_service),
) -> JSONResponse:
    result = await auth_service.test_connection(connection_id)
    return success_response("Connection is working", result)
