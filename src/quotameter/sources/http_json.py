import asyncio
from typing import Any

import httpx
import structlog

from quotameter.errors import (
    SourceAuthError,
    SourceRateLimitedError,
    SourceUnavailableError,
)
from quotameter.models import ApiBundle

logger = structlog.get_logger()

# payload kind -> path below the base URL
DEFAULT_ENDPOINTS: "dict[str, str]" = {
    "model": "usage/models",
    "tool": "usage/tools",
    "quota": "quota/limits",
    "balance": "credits",
}


class HttpJsonSource:
    """
    HttpJsonSource implements the UsageSource protocol for a usage API
    that serves plain JSON documents. It fetches one document per
    payload kind concurrently and returns the decoded documents as-is;
    interpreting the rows is the pipeline's job.

    There is no retry: a failed pass is reported and the next scrape
    interval tries again.
    """

    def __init__(
        self,
        base_url: "str",
        token: "str" = "",
        account: "str" = "api",
        endpoints: "dict[str, str] | None" = None,
        timeout: "float" = 10.0,
    ) -> "None":
        self._base_url = base_url.rstrip("/")
        self._account = account
        self._endpoints = dict(endpoints if endpoints is not None else DEFAULT_ENDPOINTS)
        headers: "dict[str, str]" = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(
            timeout=timeout,
            headers=headers,
        )

    @property
    def name(self) -> "str":
        return "api"

    @property
    def account(self) -> "str":
        return self._account

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def fetch(self) -> "ApiBundle":
        """
        fetches every configured endpoint. An endpoint answering 404
        is treated as not offered by this account; any other failure
        fails the whole pass.
        """
        kinds = list(self._endpoints)
        results = await asyncio.gather(
            *(self._fetch_kind(kind, self._endpoints[kind]) for kind in kinds),
            return_exceptions=True,
        )

        payloads: "dict[str, Any]" = {}
        for kind, result in zip(kinds, results):
            if isinstance(result, BaseException):
                logger.error("api_endpoint_error", kind=kind, error=str(result))
                raise result
            if result is not None:
                payloads[kind] = result
        return ApiBundle(payloads=payloads)

    async def _fetch_kind(self, kind: "str", path: "str") -> "Any":
        url = f"{self._base_url}/{path.lstrip('/')}"
        logger.debug("api_fetch", kind=kind, url=url)

        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise SourceUnavailableError(f"{kind}: {exc}") from exc

        if resp.status_code in (401, 403):
            raise SourceAuthError(f"{kind}: HTTP {resp.status_code}")
        if resp.status_code == 429:
            raise SourceRateLimitedError(f"{kind}: HTTP 429")
        if resp.status_code == 404:
            logger.debug("api_endpoint_missing", kind=kind)
            return None
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SourceUnavailableError(f"{kind}: HTTP {resp.status_code}") from exc

        try:
            return resp.json()
        except ValueError as exc:
            raise SourceUnavailableError(f"{kind}: invalid JSON") from exc
