# birchvault/vault_api/client.py
#
#
# Imports
import json
from typing import Optional, Dict, Any, List, Union
#
# 3rd-party Libraries
import httpx
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from ..DB.Vault_Models import UserSession
from .schemas import AuthResponse, RemoteFolder, RemoteVaultItem
from .exceptions import APIConnectionError, APIRequestError, APIResponseError, AuthenticationError
from .utils import build_list_params, extract_error_message, session_from_auth_response
#
########################################################################################################################
#
# Functions:

MERGE_DUPLICATES = "resolution=merge-duplicates"


class VaultAPIClient:
    """
    Stateless mapping onto the backend's REST surface.

    Every request carries the `apikey` header; everything except the token
    endpoints also carries the caller's bearer token. The client holds no
    session state of its own.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        auth_path: str = "/auth/v1",
        rest_path: str = "/rest/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.anon_key = anon_key
        self.auth_path = '/' + auth_path.strip('/')
        self.rest_path = '/' + rest_path.strip('/')
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"apikey": self.anon_key},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "VaultAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @staticmethod
    def _headers(access_token: Optional[str] = None, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
        prefer: Optional[str] = None,
        auth_call: bool = False,
        timeout: Optional[float] = None,
    ) -> Union[Dict[str, Any], List[Any], None]:
        client = await self._get_client()
        url = f"{self.base_url}{endpoint}"
        request_kwargs: Dict[str, Any] = {
            "params": params,
            "json": json_body,
            "headers": self._headers(access_token, prefer),
        }
        if timeout is not None:
            request_kwargs["timeout"] = httpx.Timeout(timeout)

        try:
            response = await client.request(method, endpoint, **request_kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            response_data = None
            try:
                response_data = e.response.json()
            except (json.JSONDecodeError, ValueError):
                response_data = {"raw_text": e.response.text}
            status = e.response.status_code
            error_detail = extract_error_message(response_data, default=e.response.reason_phrase or str(e))
            logger.warning(f"{method} {endpoint} failed with {status}: {error_detail}")

            if auth_call or status == 401:
                raise AuthenticationError(error_detail, status_code=status) from e
            if status == 422:
                raise APIRequestError(f"Validation Error: {error_detail}", response_data=response_data) from e
            raise APIResponseError(status, error_detail, response_data=response_data) from e
        except httpx.RequestError as e: # Covers ConnectError, TimeoutException, etc.
            raise APIConnectionError(f"Connection error to {url}: {e!r}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise APIResponseError(response.status_code, "Failed to decode JSON response",
                                   response_data={"raw_text": response.text}) from e

    # --- Auth ---
    async def _token_request(self, grant_type: str, body: Dict[str, str]) -> AuthResponse:
        data = await self._request(
            "POST", f"{self.auth_path}/token",
            params={"grant_type": grant_type}, json_body=body, auth_call=True,
        )
        try:
            return AuthResponse(**(data or {}))
        except (ValidationError, TypeError) as e:
            raise APIResponseError(200, f"Malformed token response: {e}", response_data=None) from e

    async def authenticate(self, email: str, password: str) -> UserSession:
        """Exchanges credentials for a new session. Non-2xx answers raise `AuthenticationError`."""
        logger.info(f"Authenticating {email}")
        auth = await self._token_request("password", {"email": email, "password": password})
        logger.info(f"Authenticated user {auth.user.id}")
        return session_from_auth_response(auth)

    async def refresh_session(self, session: UserSession) -> UserSession:
        """Trades the refresh token for new tokens. `last_sync_at` carries over."""
        auth = await self._token_request("refresh_token", {"refresh_token": session.refresh_token})
        return session_from_auth_response(auth, last_sync_at=session.last_sync_at)

    # --- Rows ---
    async def upsert_record(self, table: str, payload: Dict[str, Any], access_token: str) -> None:
        """Upsert by primary key; duplicates are merged, so retries are harmless."""
        await self._request(
            "POST", f"{self.rest_path}/{table}",
            json_body=payload, access_token=access_token, prefer=MERGE_DUPLICATES,
        )

    async def delete_record(self, table: str, record_id: str, access_token: str) -> None:
        await self._request(
            "DELETE", f"{self.rest_path}/{table}",
            params={"id": f"eq.{record_id}"}, access_token=access_token,
        )

    async def list_records(self, table: str, user_id: str, access_token: str,
                           since: Optional[str] = None) -> List[Dict[str, Any]]:
        data = await self._request(
            "GET", f"{self.rest_path}/{table}",
            params=build_list_params(user_id, since), access_token=access_token,
        )
        if data is None:
            return []
        if not isinstance(data, list):
            raise APIResponseError(200, f"Expected a list of {table} rows", response_data={"body": data})
        return data

    async def list_vault_items(self, user_id: str, access_token: str,
                               since: Optional[str] = None) -> List[RemoteVaultItem]:
        rows = await self.list_records("vault_items", user_id, access_token, since)
        try:
            return [RemoteVaultItem(**row) for row in rows]
        except (ValidationError, TypeError) as e:
            raise APIResponseError(200, f"Malformed vault_items row: {e}") from e

    async def list_folders(self, user_id: str, access_token: str,
                           since: Optional[str] = None) -> List[RemoteFolder]:
        rows = await self.list_records("folders", user_id, access_token, since)
        try:
            return [RemoteFolder(**row) for row in rows]
        except (ValidationError, TypeError) as e:
            raise APIResponseError(200, f"Malformed folders row: {e}") from e

    # --- Connectivity ---
    async def ping(self) -> bool:
        """
        HEAD against the REST root. Reachable-but-unauthorized (401) still counts as online.
        Never raises.
        """
        client = await self._get_client()
        try:
            response = await client.head(f"{self.rest_path}/")
        except httpx.RequestError as e:
            logger.debug(f"Connectivity check failed: {e!r}")
            return False
        return response.is_success or response.status_code == 401

#
# End of birchvault/vault_api/client.py
#######################################################################################################################
