"""Dynamic Client Registration (:rfc:`7591`) against Datadog sites.

Each CLI installation registers its own public OAuth client the first time
it logs in to a site, so no client id or secret is shipped with the tool.
The registration lists the fixed loopback redirect URIs the callback server
is allowed to listen on; the authorization server rejects any other.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ddcli import output
from ddcli.auth.client_store import ClientCredentialStorage
from ddcli.exceptions import DCRError, DCRNotAvailableError
from ddcli.models import StoredClientCredentials

logger = logging.getLogger(__name__)

DCR_CLIENT_NAME = "datadog-api-claude-plugin"
CALLBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/oauth/callback"
DCR_REDIRECT_PORTS: tuple[int, ...] = (8000, 8080, 8888, 9000)
DCR_REDIRECT_URIS: tuple[str, ...] = tuple(
    f"http://{CALLBACK_HOST}:{port}{CALLBACK_PATH}" for port in DCR_REDIRECT_PORTS
)
DCR_GRANT_TYPES: tuple[str, ...] = ("authorization_code", "refresh_token")

_HTTP_TIMEOUT = 30.0


class ClientRegistration(BaseModel):
    """The fields of a successful registration response that we rely on."""

    model_config = ConfigDict(extra="ignore")

    client_id: str
    client_name: Optional[str] = None
    redirect_uris: list[str] = []
    token_endpoint_auth_method: Optional[str] = None


def get_dcr_endpoint(site: str) -> str:
    return f"https://api.{site}/api/v2/oauth2/register"


class ClientRegistrar:
    """Obtains and remembers the registered OAuth client of each site.

    Args:
        storage: Where registered clients are persisted.
        http_client: Shared async client. When omitted a client is created
            per registration request.
    """

    def __init__(
        self,
        storage: ClientCredentialStorage,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._storage = storage
        self._http = http_client

    async def get_or_register_client(
        self, site: str, client_name: str = DCR_CLIENT_NAME
    ) -> StoredClientCredentials:
        """Return the stored client for *site*, registering one if needed.

        A stored record is returned unchanged without any network call.
        Otherwise one registration is attempted, retried once if the server
        answers with a 5xx JSON error, and persisted before returning.

        Raises:
            DCRNotAvailableError: The site has no registration endpoint.
            DCRError: Registration failed.
        """
        existing = self._storage.get_credentials(site)
        if existing is not None:
            logger.debug("Using registered client %s for %s", existing.client_id, site)
            return existing

        output.info("Registering new OAuth client...")
        redirect_uris = list(DCR_REDIRECT_URIS)
        try:
            registration = await self.register_client(site, client_name, redirect_uris)
        except DCRError as exc:
            if not exc.retryable:
                raise
            output.info("Server error, retrying client registration...")
            registration = await self.register_client(site, client_name, redirect_uris)

        credentials = StoredClientCredentials(
            client_id=registration.client_id,
            client_name=registration.client_name or client_name,
            redirect_uris=registration.redirect_uris or redirect_uris,
            registered_at=int(time.time()),
            site=site,
        )
        self._storage.save_credentials(site, credentials)
        output.success("OAuth client registered successfully.")
        return credentials

    async def register_client(
        self,
        site: str,
        client_name: str = DCR_CLIENT_NAME,
        redirect_uris: Optional[list[str]] = None,
    ) -> ClientRegistration:
        """POST one registration request to the site's DCR endpoint.

        Response handling, in order:

        * HTTP 404: :class:`DCRNotAvailableError`.
        * HTTP 5xx, including empty or non-JSON bodies: :class:`DCRError`
          with ``retryable=True``.
        * Empty body or non-JSON content type below 500: terminal
          :class:`DCRError`.
        * Other HTTP 4xx: terminal :class:`DCRError` with the server's
          ``error``/``error_description``.

        Transport failures raise ``DCRError(error_code="network_error")``.
        """
        endpoint = get_dcr_endpoint(site)
        payload = {
            "client_name": client_name,
            "redirect_uris": list(redirect_uris or DCR_REDIRECT_URIS),
            "grant_types": list(DCR_GRANT_TYPES),
        }
        logger.debug("POST %s", endpoint)

        try:
            response = await self._post(endpoint, payload)
        except httpx.HTTPError as exc:
            raise DCRError(
                f"Client registration request failed: {exc}. "
                "Check your network connection and try again.",
                error_code="network_error",
            ) from exc

        status = response.status_code
        if status == 404:
            raise DCRNotAvailableError(site)

        if not response.content.strip():
            raise DCRError(
                f"Client registration endpoint returned an empty response (HTTP {status}). "
                f"Endpoint: {endpoint}. Registration may not be available for this site.",
                status_code=status,
                error_code="empty_response",
                retryable=status >= 500,
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise DCRError(
                f"Client registration endpoint returned a non-JSON response "
                f"(HTTP {status}, Content-Type: {content_type or 'none'}): "
                f"{response.text[:200]}",
                status_code=status,
                error_code="invalid_content_type",
                retryable=status >= 500,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise DCRError(
                f"Failed to parse client registration response (HTTP {status}): "
                f"{response.text[:500]}",
                status_code=status,
                retryable=status >= 500,
            ) from exc

        if status >= 400:
            error_code = body.get("error") if isinstance(body, dict) else None
            description = body.get("error_description") if isinstance(body, dict) else None
            raise DCRError(
                description or error_code or f"Client registration failed with HTTP {status}",
                status_code=status,
                error_code=error_code,
                retryable=status >= 500,
            )

        try:
            return ClientRegistration.model_validate(body)
        except ValidationError as exc:
            raise DCRError(
                "Client registration response did not include a client_id.",
                status_code=status,
                error_code="invalid_response",
            ) from exc

    def delete_client_credentials(self, site: str) -> bool:
        """Forget the local client record. The remote registration is untouched."""
        return self._storage.delete_credentials(site)

    def get_stored_client_credentials(self, site: str) -> Optional[StoredClientCredentials]:
        return self._storage.get_credentials(site)

    def has_client_credentials(self, site: str) -> bool:
        return self._storage.get_credentials(site) is not None

    async def _post(self, url: str, payload: dict) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self._http is not None:
            return await self._http.post(url, json=payload, headers=headers, timeout=_HTTP_TIMEOUT)
        async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT) as client:
            return await client.post(url, json=payload, headers=headers)
