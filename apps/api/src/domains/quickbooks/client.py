# apps/api/src/domains/quickbooks/client.py
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from src.core.settings import settings
from src.shared.exceptions import (
    NetworkError,
    RemoteAuthError,
    RemoteFaultError,
    RemoteHttpError,
)

from .types import QBOCredentials, QBOFault

logger = logging.getLogger(__name__)


def parse_fault(body: Any) -> Optional[QBOFault]:
    """Extract ``{Fault: {Error: [...]}}`` from a response body, if present."""
    if not isinstance(body, dict):
        return None
    fault_data = body.get("Fault") or body.get("fault")
    if not isinstance(fault_data, dict):
        return None
    try:
        fault = QBOFault(**fault_data)
    except ValidationError:
        return None
    return fault if fault.first else None


def _fault_to_error(fault: QBOFault, http_status: Optional[int]) -> RemoteFaultError:
    first = fault.first
    return RemoteFaultError(
        code=first.code,
        detail=first.Detail or first.Message or "QuickBooks fault",
        element=first.element,
        http_status=http_status,
    )


class QuickBooksClient:
    """
    Thin async client for the QuickBooks Online Accounting API.

    One HTTP round trip per call and no retries; callers decide whether a
    failure is worth another attempt.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        minor_version: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.qbo_api_base_url).rstrip("/")
        self.minor_version = minor_version or settings.QBO_MINOR_VERSION
        self.timeout = timeout or settings.QBO_REQUEST_TIMEOUT

    def _company_url(self, realm_id: str, path: str) -> str:
        return f"{self.base_url}/v3/company/{realm_id}/{path}"

    def _headers(self, credentials: QBOCredentials) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credentials.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def create_entity(
        self,
        endpoint: str,
        payload: Dict[str, Any],
        credentials: QBOCredentials,
    ) -> Dict[str, Any]:
        """
        POST a new entity and return the created resource.

        Args:
            endpoint: Entity endpoint name, e.g. ``invoice`` or ``payment``
            payload: Wire-format request body
            credentials: Access token and realm for the connection

        Returns:
            The created resource object (e.g. the ``Invoice`` member of the body)

        Raises:
            RemoteFaultError: QuickBooks returned a structured fault
            RemoteAuthError: The token was rejected (401/403)
            RemoteHttpError: Any other non-2xx status without a fault body
            NetworkError: Transport failure or timeout
        """
        body = await self._request(
            "POST",
            self._company_url(credentials.realm_id, endpoint),
            credentials,
            json=payload,
        )

        entity_name = endpoint[:1].upper() + endpoint[1:]
        created = body.get(entity_name)
        if not isinstance(created, dict):
            raise RemoteHttpError(200, f"Response did not contain {entity_name}")
        return created

    async def query(
        self, credentials: QBOCredentials, statement: str
    ) -> Dict[str, Any]:
        body = await self._request(
            "GET",
            self._company_url(credentials.realm_id, "query"),
            credentials,
            params={"query": statement},
        )
        return body.get("QueryResponse", {})

    async def get_company_info(self, credentials: QBOCredentials) -> Dict[str, Any]:
        response = await self.query(credentials, "select * from CompanyInfo")
        companies = response.get("CompanyInfo") or []
        return companies[0] if companies else {}

    async def _request(
        self,
        method: str,
        url: str,
        credentials: QBOCredentials,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        query_params = {"minorversion": self.minor_version}
        if params:
            query_params.update(params)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.request(
                    method,
                    url,
                    headers=self._headers(credentials),
                    params=query_params,
                    json=json,
                )
            except httpx.TimeoutException as e:
                raise NetworkError(f"QuickBooks request timed out: {e}")
            except httpx.RequestError as e:
                raise NetworkError(f"QuickBooks request failed: {e}")

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code in (401, 403):
            logger.warning(
                f"QuickBooks rejected credentials with HTTP {response.status_code}"
            )
            raise RemoteAuthError(
                f"QuickBooks authorization failed (HTTP {response.status_code})",
                data={"httpStatus": response.status_code},
            )

        fault = parse_fault(body)
        if fault:
            raise _fault_to_error(fault, response.status_code)

        if response.status_code >= 400:
            raise RemoteHttpError(response.status_code, response.text)

        if not isinstance(body, dict):
            raise RemoteHttpError(response.status_code, "Response body is not JSON")
        return body
