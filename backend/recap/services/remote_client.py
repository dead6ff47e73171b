"""
Async HTTP client for the memories remote service.

Covers the three endpoints the pipeline needs: requesting a login code,
verifying it, and fetching the memories feed. Responses are validated
against pydantic schemas so malformed payloads never leave this module.
"""

import logging
import time
from typing import TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from recap.config import Settings
from recap.logging_config import mask_phone
from recap.models.schemas import (
    DiaryRecord,
    MemoryFeedResponse,
    SendCodeResponse,
    VerifyResponse,
)
from recap.services.errors import (
    AuthRequestFailed,
    AuthVerifyFailed,
    RemoteServiceError,
    RetrievalFailed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class RemoteApiClient:
    """
    Async HTTP client for the memories API.

    No request is retried; failures are raised to the caller.

    Example:
        async with RemoteApiClient.from_settings(settings) as api:
            session_info = await api.send_code("+15551234567")
            token = await api.verify(session_info, "123456")
            records = await api.fetch_memories(token)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize remote API client.

        Args:
            base_url: Remote service root URL
            timeout: Per-request timeout in seconds
            http_client: Preconfigured client (tests inject a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RemoteApiClient":
        """Create RemoteApiClient from application settings."""
        return cls(base_url=settings.api_base_url, timeout=settings.http_timeout)

    async def __aenter__(self) -> "RemoteApiClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def send_code(self, phone: str) -> str:
        """
        Ask the service to send a one-time code to a phone number.

        Args:
            phone: Phone number in international format

        Returns:
            Opaque OTP session token to pass to verify()

        Raises:
            AuthRequestFailed: On transport error, non-2xx status or bad payload
        """
        logger.info(f"Requesting login code for {mask_phone(phone)}")
        payload = await self._request(
            "POST",
            "/login/send-code",
            SendCodeResponse,
            AuthRequestFailed,
            "Failed to send verification code",
            json={"phone": phone},
        )
        return payload.data.otp_session.session_info

    async def verify(self, session_info: str, code: str) -> str:
        """
        Exchange a one-time code for a bearer credential.

        Args:
            session_info: OTP session token from send_code()
            code: One-time code received by SMS

        Returns:
            Bearer credential

        Raises:
            AuthVerifyFailed: On transport error, non-2xx status or bad payload
        """
        logger.info("Verifying login code")
        payload = await self._request(
            "POST",
            "/login/verify",
            VerifyResponse,
            AuthVerifyFailed,
            "Failed to verify code",
            json={"code": code, "otpSession": session_info},
        )
        return payload.data.token

    async def fetch_memories(self, token: str) -> list[DiaryRecord]:
        """
        Fetch the full memories feed in one call.

        Args:
            token: Bearer credential

        Returns:
            Diary records in the order the service returned them

        Raises:
            RetrievalFailed: On transport error, non-2xx status or bad payload
        """
        payload = await self._request(
            "GET",
            "/friends/mem-feed",
            MemoryFeedResponse,
            RetrievalFailed,
            "Failed to fetch memories",
            headers={"token": token},
        )
        records = payload.data.data
        logger.info(f"Fetched {len(records)} memories")
        return records

    async def _request(
        self,
        method: str,
        path: str,
        schema: type[T],
        error_cls: type[RemoteServiceError],
        description: str,
        **kwargs,
    ) -> T:
        """
        Send a request and validate the JSON body against a schema.

        Every failure mode is converted into error_cls so callers only
        deal with the pipeline taxonomy.
        """
        url = f"{self.base_url}{path}"
        start_time = time.time()

        try:
            response = await self.http_client.request(
                method, url, timeout=self.timeout, **kwargs
            )
            response.raise_for_status()

        except httpx.TimeoutException as e:
            elapsed = time.time() - start_time
            logger.error(f"{method} {path} timed out after {elapsed:.1f}s")
            raise error_cls(
                f"{description}: timeout after {elapsed:.1f}s",
                original_error=e,
            ) from e

        except httpx.HTTPStatusError as e:
            logger.error(
                f"{method} {path} HTTP error: "
                f"{e.response.status_code} - {e.response.text[:200]}"
            )
            raise error_cls(
                f"{description}: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                response_body=e.response.text[:500],
                original_error=e,
            ) from e

        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {type(e).__name__}: {e}")
            raise error_cls(
                f"{description}: {type(e).__name__}",
                original_error=e,
            ) from e

        logger.debug(
            f"{method} {path} -> {response.status_code} "
            f"({time.time() - start_time:.2f}s)"
        )

        try:
            return schema.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"{method} {path} returned malformed payload: {e}")
            raise error_cls(
                f"{description}: malformed response",
                status_code=response.status_code,
                response_body=response.text[:500],
                original_error=e,
            ) from e
