"""HTTP access to the upstream open-data catalog.

Wraps an ``httpx.AsyncClient`` with URL composition, status classification,
and bounded retries with exponential backoff for transient failures.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from anvisa_sync.config import UpstreamSettings
from anvisa_sync.errors import UpstreamFetchError

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


class Endpoint(str, Enum):
    """Upstream paths, relative to the integration base URL."""
    DATASETS = "publico/conjuntos-dados"
    LEGAL_COMPLIANCE = "publico/conjuntos-dados/observancia-legal"
    SUSTAINABILITY_GOALS = "publico/conjuntos-dados/objetivos-desenvolvimento-sustentavel"
    FORMATS = "publico/conjuntos-dados/formatos"
    DATA_REQUESTS = "solicitacoes"
    ORGANIZATIONS = "publico/organizacao"
    THEMES = "temas"
    REUSES = "publico/reusos"
    REUSE = "publico/reuso"
    PENDING_REUSES = "publico/reusos/homologacao/pendente"


class _TransientStatus(Exception):
    """Internal marker for responses worth retrying."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"{response.status_code} {response.reason_phrase}")
        self.response = response


def compose_url(base_url: str, path: str, entity_id: str | None = None) -> str:
    """Join the integration base URL with an endpoint path.

    Paths outside the ``publico/`` tree are served from the API root, so a
    trailing ``/publico`` on the base URL is dropped for them.
    """
    base = base_url.rstrip("/")
    if not path.startswith("publico/") and base.endswith("/publico"):
        base = base[: -len("/publico")]
    url = f"{base}/{path.strip('/')}"
    if entity_id is not None:
        url = f"{url}/{quote(str(entity_id), safe='')}"
    return url


class CatalogFetcher:
    """Issues GET requests against the catalog API and unwraps ``result``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        *,
        upstream: UpstreamSettings,
        api_key: str | None = None,
    ):
        self.client = client
        self.base_url = base_url
        self.upstream = upstream
        self.headers = {"Accept": "application/json"}
        if api_key:
            self.headers[upstream.api_key_header] = api_key

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``url`` and return the decoded JSON body.

        Raises:
            UpstreamFetchError: On a non-2xx status (after retries for transient
                ones), a transport failure, or a body that is not JSON.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.upstream.retry_attempts),
                wait=wait_exponential(
                    multiplier=1,
                    min=self.upstream.retry_min_wait,
                    max=self.upstream.retry_max_wait,
                ),
                retry=retry_if_exception_type((httpx.TransportError, _TransientStatus)),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(
                            f"Retrying GET {url} (attempt {attempt.retry_state.attempt_number}"
                            f"/{self.upstream.retry_attempts})"
                        )
                    response = await self.client.get(url, params=params, headers=self.headers)
                    if response.status_code in TRANSIENT_STATUSES:
                        raise _TransientStatus(response)
        except _TransientStatus as e:
            response = e.response
        except httpx.TransportError as e:
            logger.error(f"Transport failure for {url}: {e}")
            raise UpstreamFetchError(f"Failed to reach {url}: {e}", url=url) from e

        if not response.is_success:
            raise UpstreamFetchError(
                f"Upstream request failed: {response.status_code} {response.reason_phrase} ({url})",
                url=url,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchError(
                f"Upstream returned a non-JSON body ({url})",
                url=url,
                status_code=response.status_code,
            ) from e

    async def fetch_collection(self, endpoint: Endpoint) -> list[Any]:
        """Fetch the items of a list endpoint.

        Reads only the first page unless ``follow_pagination`` is enabled, in
        which case pages are requested until an empty or short page comes
        back or ``max_pages`` is reached.
        """
        url = compose_url(self.base_url, endpoint.value)
        if not self.upstream.follow_pagination:
            return _result_list(await self.get_json(url), url)

        items: list[Any] = []
        for page in range(1, self.upstream.max_pages + 1):
            batch = _result_list(
                await self.get_json(url, params={self.upstream.page_param: page}),
                url,
            )
            items.extend(batch)
            if len(batch) < self.upstream.page_size:
                break
        else:
            logger.warning(f"Stopped paging {url} after {self.upstream.max_pages} pages")
        return items

    async def fetch_detail(self, endpoint: Endpoint, entity_id: str) -> dict[str, Any]:
        """Fetch one record from a detail endpoint."""
        url = compose_url(self.base_url, endpoint.value, entity_id)
        payload = await self.get_json(url)
        result = payload.get("result") if isinstance(payload, dict) else None
        if not isinstance(result, dict) or not result:
            raise UpstreamFetchError(f"Upstream returned no record for '{entity_id}' ({url})", url=url)
        return result


def _result_list(payload: Any, url: str) -> list[Any]:
    """Unwrap the ``result`` array of a list response."""
    result = payload.get("result") if isinstance(payload, dict) else None
    if result is None:
        return []
    if not isinstance(result, list):
        logger.warning(f"Ignoring non-list result from {url}: {type(result).__name__}")
        return []
    return result
