"""
Login handshake state machine.

AWAITING_PHONE --submit_phone--> AWAITING_CODE --submit_code--> AUTHENTICATED

A failed step leaves the phase unchanged; only reset() leaves
AUTHENTICATED.
"""

import logging

from recap.config import Settings
from recap.logging_config import mask_phone
from recap.models.schemas import AuthPhase
from recap.services.errors import AuthRequestFailed, AuthVerifyFailed
from recap.services.remote_client import RemoteApiClient

logger = logging.getLogger(__name__)


class CredentialSession:
    """
    Tracks one login attempt from phone number to bearer credential.

    Invariants:
        credential is set iff phase is AUTHENTICATED
        pending_session is set iff phase is AWAITING_CODE

    Example:
        session = CredentialSession(api)
        await session.submit_phone("+15551234567")
        credential = await session.submit_code("123456")
    """

    def __init__(
        self,
        api: RemoteApiClient,
        phone_min_length: int = 8,
        phone_max_length: int = 20,
        code_length: int = 6,
    ):
        self.api = api
        self.phone_min_length = phone_min_length
        self.phone_max_length = phone_max_length
        self.code_length = code_length
        self._phase = AuthPhase.AWAITING_PHONE
        self._pending_session: str | None = None
        self._credential: str | None = None

    @classmethod
    def from_settings(cls, api: RemoteApiClient, settings: Settings) -> "CredentialSession":
        return cls(
            api,
            phone_min_length=settings.phone_min_length,
            phone_max_length=settings.phone_max_length,
            code_length=settings.code_length,
        )

    @property
    def phase(self) -> AuthPhase:
        return self._phase

    @property
    def pending_session(self) -> str | None:
        return self._pending_session

    @property
    def credential(self) -> str | None:
        return self._credential

    async def submit_phone(self, phone: str) -> str:
        """
        Request a one-time code for a phone number.

        Args:
            phone: Phone number; only its length is checked

        Returns:
            Pending OTP session token

        Raises:
            AuthRequestFailed: Wrong phase, implausible phone or remote failure
        """
        if self._phase is not AuthPhase.AWAITING_PHONE:
            raise AuthRequestFailed(
                f"Cannot request a code while {self._phase.value}; reset the session first"
            )

        phone = phone.strip()
        if not self.phone_min_length <= len(phone) <= self.phone_max_length:
            raise AuthRequestFailed(
                f"Phone number must be {self.phone_min_length}-"
                f"{self.phone_max_length} characters"
            )

        session_info = await self.api.send_code(phone)

        self._pending_session = session_info
        self._phase = AuthPhase.AWAITING_CODE
        logger.info(f"Code requested for {mask_phone(phone)}, awaiting verification")
        return session_info

    async def submit_code(self, code: str) -> str:
        """
        Verify the one-time code and obtain the credential.

        Args:
            code: Fixed-length numeric code

        Returns:
            Bearer credential

        Raises:
            AuthVerifyFailed: Wrong phase, malformed code or remote failure
        """
        if self._phase is not AuthPhase.AWAITING_CODE:
            raise AuthVerifyFailed(
                f"Cannot verify a code while {self._phase.value}"
            )

        code = code.strip()
        if len(code) != self.code_length or not (code.isascii() and code.isdigit()):
            raise AuthVerifyFailed(f"Code must be exactly {self.code_length} digits")

        credential = await self.api.verify(self._pending_session, code)

        self._credential = credential
        self._pending_session = None
        self._phase = AuthPhase.AUTHENTICATED
        logger.info("Authenticated")
        return credential

    def reset(self) -> None:
        """Discard any pending token or credential and start over."""
        if self._phase is not AuthPhase.AWAITING_PHONE:
            logger.info(f"Resetting session (was {self._phase.value})")
        self._pending_session = None
        self._credential = None
        self._phase = AuthPhase.AWAITING_PHONE
