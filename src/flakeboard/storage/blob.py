"""Blob storage for screenshots and step logs."""

from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import quote

import httpx

from flakeboard.core.exceptions import BlobStorageError
from flakeboard.logging import get_logger
from flakeboard.retry import retry_with_backoff

logger = get_logger(__name__)


class BlobStorage(Protocol):
    """Object storage the attachment materializer writes to."""

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        """Store ``data`` under ``key``. Raises on failure."""
        ...

    async def get_durable_reference(self, bucket: str, key: str, expires_in: int) -> str:
        """Return a URL that stays retrievable for ``expires_in`` seconds."""
        ...


class SupabaseBlobStorage:
    """Client for a Supabase-compatible storage REST API.

    Usage:
        storage = SupabaseBlobStorage("https://xyz.supabase.co", service_key="...")
        await storage.upload("test-screenshots", "screenshots/a.png", data, "image/png")
        url = await storage.get_durable_reference("test-screenshots", "screenshots/a.png", 3600)

    Transport errors and 429/5xx responses are retried with exponential
    backoff; other HTTP error responses are not.
    """

    CACHE_CONTROL = "3600"
    RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
    ):
        """Initialize the client.

        Args:
            base_url: Project URL, without the ``/storage/v1`` suffix.
            service_key: Service role key used for both auth headers.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport, mainly for tests.
            max_retries: Retries for transport failures and retryable statuses.
            base_delay: Initial backoff delay in seconds.
            max_delay: Maximum backoff delay in seconds.
        """
        if not service_key:
            raise ValueError("Storage service key is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }
        self._send = retry_with_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
            retryable_exceptions=(httpx.TransportError,),
            retry_on_result=self._is_transient,
        )(self._send_once)

    @classmethod
    def _is_transient(cls, response: httpx.Response) -> bool:
        return response.status_code in cls.RETRYABLE_STATUS_CODES

    def _object_url(self, *parts: str) -> str:
        path = "/".join(quote(part, safe="/") for part in parts)
        return f"{self.base_url}/storage/v1/object/{path}"

    async def _send_once(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with httpx.AsyncClient(transport=self._transport) as client:
            return await client.request(method, url, timeout=self.timeout, **kwargs)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._send(method, url, **kwargs)
        except httpx.RequestError as e:
            raise BlobStorageError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            raise BlobStorageError(
                f"Request failed: {response.text}", status_code=response.status_code
            )
        return response

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        """Upload bytes without overwriting an existing object.

        Raises:
            BlobStorageError: On transport or HTTP errors.
        """
        headers = {
            **self._headers,
            "content-type": content_type,
            "cache-control": self.CACHE_CONTROL,
            "x-upsert": "false",
        }
        await self._request("POST", self._object_url(bucket, key), headers=headers, content=data)
        logger.debug("blob_uploaded", bucket=bucket, key=key, size=len(data))

    async def get_durable_reference(self, bucket: str, key: str, expires_in: int) -> str:
        """Create a signed URL for an uploaded object.

        Raises:
            BlobStorageError: On transport or HTTP errors, or a response
                without a signed URL.
        """
        response = await self._request(
            "POST",
            self._object_url("sign", bucket, key),
            headers=self._headers,
            json={"expiresIn": expires_in},
        )
        try:
            payload = response.json()
        except ValueError as e:
            raise BlobStorageError(f"Invalid sign response: {e}") from e
        signed = payload.get("signedURL") if isinstance(payload, dict) else None
        if not signed:
            raise BlobStorageError("Sign response did not contain a signed URL")
        return f"{self.base_url}/storage/v1{signed}"
