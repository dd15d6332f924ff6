"""HTTP transport for the Azure DevOps REST API."""

import asyncio
import base64
import json
import logging
from collections.abc import AsyncGenerator, Mapping
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from aiohttp_socks import ProxyConnector

from ado_publish.config import AdoConfig

log = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"
OCTET_STREAM_CONTENT_TYPE = "application/octet-stream"


class AdoApiError(Exception):
    """Raised when Azure DevOps answers with a non-2xx status."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"ADO API error: {status} - {body}")
        self.status = status
        self.body = body


RETRYABLE_ERRORS = (AdoApiError, aiohttp.ClientError, TimeoutError)


@dataclass(frozen=True, kw_only=True)
class AdoTransport:
    """Authenticated, retrying access to one organization/project.

    Requests go through ``proxy_session`` when a SOCKS5 proxy is configured,
    or through ``session`` with a per-request ``proxy`` for HTTP(S) proxies.
    URLs matching the bypass list always use ``session`` directly.
    """

    config: AdoConfig
    session: aiohttp.ClientSession = field(repr=False)
    proxy_session: aiohttp.ClientSession | None = field(default=None, repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: AdoConfig
    ) -> AsyncGenerator["AdoTransport", None]:
        """Create transport with managed session lifecycle."""
        # Azure DevOps uses Basic Auth with empty username and PAT as password
        auth_string = f":{config.pat.get_secret_value()}"
        auth_bytes = base64.b64encode(auth_string.encode("ascii")).decode("ascii")
        session_kwargs: dict[str, Any] = {
            "base_url": config.api_base_url,
            "headers": {
                "Authorization": f"Basic {auth_bytes}",
                "Accept": JSON_CONTENT_TYPE,
            },
            "timeout": aiohttp.ClientTimeout(total=config.timeout),
        }

        async with AsyncExitStack() as stack:
            session = await stack.enter_async_context(
                aiohttp.ClientSession(**session_kwargs)
            )
            proxy_session = None
            proxy = config.proxy
            if proxy.enabled:
                if proxy.protocol == "socks5":
                    proxy_session = await stack.enter_async_context(
                        aiohttp.ClientSession(
                            connector=ProxyConnector.from_url(proxy.url),
                            **session_kwargs,
                        )
                    )
                log.info(
                    "ADO proxy configured: %s://%s:%s",
                    proxy.protocol,
                    proxy.host,
                    proxy.port,
                )

            log.debug("ADO base URL: %s", config.api_base_url)
            yield cls(config=config, session=session, proxy_session=proxy_session)

    @property
    def base_path(self) -> str:
        """Path prefix of every API call."""
        return f"/{self.config.organization}/{self.config.project}/_apis"

    def url_for(self, path: str) -> str:
        """Absolute URL of an API path, as matched against the bypass list."""
        return (
            f"{self.config.api_base_url.rstrip('/')}{self.base_path}{path}"
            f"?api-version={self.config.api_version}"
        )

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        params: Mapping[str, str] | None = None,
        content_type: str = JSON_CONTENT_TYPE,
    ) -> Any:
        """Send a request, retrying failures with linear backoff.

        Args:
            method: HTTP method
            path: API path below ``/{organization}/{project}/_apis``
            body: JSON-serializable payload, or raw bytes
            params: Extra query parameters
            content_type: Content type of the payload

        Returns:
            Decoded JSON body, or the raw text if it is not JSON

        Raises:
            AdoApiError: If the last attempt got a non-2xx response
            aiohttp.ClientError: If the last attempt failed on the network
            TimeoutError: If the last attempt timed out

        """
        attempts = self.config.retry_count
        for attempt in range(1, attempts + 1):
            try:
                return await self._send(method, path, body, params, content_type)
            except RETRYABLE_ERRORS as error:
                log.warning(
                    "ADO API request failed (attempt %d/%d): %s %s: %s",
                    attempt,
                    attempts,
                    method,
                    path,
                    str(error) or repr(error),
                )
                if attempt == attempts:
                    raise
                await asyncio.sleep(self.config.retry_delay * attempt)

        # retry_count is validated to be at least 1
        raise AssertionError("unreachable")

    async def _send(
        self,
        method: str,
        path: str,
        body: Any,
        params: Mapping[str, str] | None,
        content_type: str,
    ) -> Any:
        session, proxy = self._route(self.url_for(path))

        kwargs: dict[str, Any] = {
            "params": {"api-version": self.config.api_version, **(params or {})},
            "headers": {"Content-Type": content_type},
        }
        if proxy is not None:
            kwargs["proxy"] = proxy
        if isinstance(body, bytes):
            kwargs["data"] = body
        elif body is not None:
            kwargs["json"] = body

        url = f"{self.base_path}{path}"
        async with session.request(method, url, **kwargs) as response:
            text = await response.text()
            if not 200 <= response.status < 300:
                raise AdoApiError(response.status, text)

            if not text:
                return None
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                return text

    def _route(self, url: str) -> tuple[aiohttp.ClientSession, str | None]:
        """Pick the session and per-request proxy for a URL."""
        proxy = self.config.proxy
        if not proxy.enabled:
            return self.session, None
        if proxy.should_bypass(url):
            log.debug("Bypassing proxy for: %s", url)
            return self.session, None
        if self.proxy_session is not None:
            return self.proxy_session, None
        return self.session, proxy.url
