"""
Diary record retrieval and filtering.

Needs only a credential string, not the login state machine.
"""

import logging
import re
from collections.abc import Sequence

from recap.models.schemas import DiaryRecord, ImagePair
from recap.services.errors import Unauthenticated
from recap.services.remote_client import RemoteApiClient

logger = logging.getLogger(__name__)

YEAR_PATTERN = re.compile(r"^\d{4}$")


def normalize_year(year: str | int) -> str:
    """Return year as a 4-digit string.

    Raises:
        ValueError: If year is not exactly four digits
    """
    year_str = str(year).strip()
    if not YEAR_PATTERN.match(year_str):
        raise ValueError(f"Year must be 4 digits, got {year!r}")
    return year_str


def filter_by_year(records: Sequence[DiaryRecord], year: str | int) -> list[DiaryRecord]:
    """Keep records whose day starts with year, preserving input order."""
    prefix = normalize_year(year)
    return [record for record in records if record.day.startswith(prefix)]


def to_image_pairs(records: Sequence[DiaryRecord]) -> list[ImagePair]:
    """Project records into image pairs in ascending day order.

    Sort is stable, so already chronological input is unchanged.
    """
    ordered = sorted(records, key=lambda record: record.day)
    return [
        ImagePair(
            day=record.day,
            primary_url=record.primary_asset.url,
            secondary_url=record.secondary_asset.url,
        )
        for record in ordered
    ]


class RecordClient:
    """
    Fetches diary records with a held credential.

    Example:
        records = await RecordClient(api).fetch_all(credential)
        pairs = to_image_pairs(filter_by_year(records, "2023"))
    """

    def __init__(self, api: RemoteApiClient):
        self.api = api

    async def fetch_all(self, credential: str | None) -> list[DiaryRecord]:
        """
        Fetch every diary record the service returns in one call.

        Raises:
            Unauthenticated: If no credential is given
            RetrievalFailed: On any remote failure
        """
        if not credential:
            raise Unauthenticated("Not authenticated: no credential held")
        return await self.api.fetch_memories(credential)

    async def fetch_year(self, credential: str | None, year: str | int) -> list[DiaryRecord]:
        """Fetch all records and keep those from one year."""
        year_str = normalize_year(year)
        records = await self.fetch_all(credential)
        selected = filter_by_year(records, year_str)
        logger.info(f"Selected {len(selected)}/{len(records)} memories from {year_str}")
        return selected
