# tests/fixtures/quickbooks_fixtures.py
"""Test fixtures for QuickBooks Online client and OAuth tests."""
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest


class MockHttpResponse:
    """Mock HTTP response for testing."""

    def __init__(
        self,
        json_data: Any,
        status_code: int = 200,
        text: Optional[str] = None,
    ):
        self.json_data = json_data
        self.status_code = status_code
        self.text = text if text is not None else str(json_data)

    def json(self) -> Any:
        if self.json_data is None:
            raise ValueError("No JSON body")
        return self.json_data

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            from httpx import HTTPStatusError, Request, Response

            request = Mock(spec=Request)
            response = Mock(spec=Response)
            response.status_code = self.status_code
            response.text = self.text
            raise HTTPStatusError(
                message=f"HTTP {self.status_code}",
                request=request,
                response=response,
            )


def create_mock_http_response(
    json_data: Any, status_code: int = 200, text: Optional[str] = None
) -> MockHttpResponse:
    """Create a mock HTTP response."""
    return MockHttpResponse(json_data, status_code, text)


def mock_async_client(mock_client_class: MagicMock) -> Mock:
    """
    Wire a patched ``httpx.AsyncClient`` so ``async with`` yields a mock whose
    ``request``/``post`` methods can be configured by the test.
    """
    http_client = Mock()
    http_client.request = AsyncMock()
    http_client.post = AsyncMock()
    mock_client_class.return_value.__aenter__.return_value = http_client
    mock_client_class.return_value.__aexit__.return_value = False
    return http_client


@pytest.fixture
def mock_settings():
    """Mock settings for QuickBooks configuration."""
    settings_mock = Mock()
    settings_mock.QBO_CLIENT_ID = "test-client-id"
    settings_mock.QBO_CLIENT_SECRET = "test-client-secret"
    settings_mock.QBO_REDIRECT_URI = "http://localhost:8000/api/v1/qbo/auth/callback"
    settings_mock.QBO_SCOPES = "com.intuit.quickbooks.accounting"
    settings_mock.QBO_AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
    settings_mock.QBO_TOKEN_URL = (
        "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
    )
    settings_mock.QBO_REVOKE_URL = (
        "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
    )
    settings_mock.QBO_REQUEST_TIMEOUT = 30.0
    settings_mock.TOKEN_REFRESH_THRESHOLD_MINUTES = 10
    settings_mock.DEFAULT_ACCESS_TOKEN_LIFETIME_SECONDS = 3600
    settings_mock.DEFAULT_REFRESH_TOKEN_LIFETIME_DAYS = 100
    settings_mock.OAUTH_STATE_TTL_MINUTES = 10
    settings_mock.JWT_SECRET = "test-jwt-secret-for-state-tokens"
    return settings_mock


@pytest.fixture
def qbo_token_response_data() -> Dict[str, Any]:
    """Token endpoint body for a successful refresh or code exchange."""
    return {
        "access_token": "new-access-token",
        "refresh_token": "new-refresh-token",
        "expires_in": 3600,
        "x_refresh_token_expires_in": 8726400,
        "token_type": "bearer",
    }


@pytest.fixture
def qbo_fault_response_data() -> Dict[str, Any]:
    """Business validation fault as returned by the Accounting API."""
    return {
        "Fault": {
            "Error": [
                {
                    "Message": "Invalid Reference Id",
                    "Detail": "Invalid Reference Id : Something you're trying to use has been made inactive.",
                    "code": "6240",
                    "element": "CustomerRef",
                }
            ],
            "type": "ValidationFault",
        },
        "time": "2024-01-15T10:00:00.000-08:00",
    }


@pytest.fixture
def qbo_invoice_created_data() -> Dict[str, Any]:
    return {
        "Invoice": {
            "Id": "130",
            "SyncToken": "0",
            "DocNumber": "INV-0001",
            "TotalAmt": 100.0,
        },
        "time": "2024-01-15T10:00:00.000-08:00",
    }


@pytest.fixture
def qbo_company_info_data() -> Dict[str, Any]:
    return {
        "QueryResponse": {
            "CompanyInfo": [{"CompanyName": "Sandbox Company_US_1", "Id": "1"}],
            "maxResults": 1,
        }
    }
