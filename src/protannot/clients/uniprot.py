"""
UniProt REST client for accession-to-taxon lookups.

Used as a fallback when a BLAST subject accession is missing from the
local reference entry table. Only the organism taxon id of an entry is
retrieved.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Self
from urllib.parse import quote

import httpx

from protannot.core.exceptions import ProtannotError

logger = logging.getLogger(__name__)

UNIPROT_API_BASE = "https://rest.uniprot.org"

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds
DEFAULT_RETRY_BACKOFF = 2.0  # exponential multiplier


class UniProtAPIError(ProtannotError):
    """Error communicating with the UniProt REST API."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        suggestion = "Check your internet connection and try again."
        if status_code == 429:
            suggestion = "Rate limited. Wait a moment and try again."
        elif status_code and status_code >= 500:
            suggestion = "UniProt server error. Try again later."

        super().__init__(message=message, suggestion=suggestion)


class UniProtTaxonLookup:
    """Resolve UniProtKB accessions to organism taxon ids.

    Results (including misses) are cached for the lifetime of the
    instance, so each accession is requested at most once per run.

    Example:
        >>> with UniProtTaxonLookup() as lookup:
        ...     lookup("P69905")
        9606
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        base_url: str = UNIPROT_API_BASE,
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff
        self.base_url = base_url
        self._client: httpx.Client | None = None
        self._cache: dict[str, int | None] = {}

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __call__(self, accession: str) -> int | None:
        return self.taxon_for_accession(accession)

    def taxon_for_accession(self, accession: str) -> int | None:
        """Organism taxon id of a UniProtKB entry, or None if unknown.

        Raises:
            UniProtAPIError: If the API keeps failing after all retries.
        """
        if accession in self._cache:
            return self._cache[accession]

        endpoint = f"/uniprotkb/{quote(accession, safe='')}"
        data = self._get(endpoint, {"fields": "organism_id"})
        taxon_id = self._parse_taxon_id(data) if data is not None else None
        self._cache[accession] = taxon_id
        return taxon_id

    @staticmethod
    def _parse_taxon_id(data: dict[str, Any]) -> int | None:
        organism = data.get("organism") or {}
        taxon_id = organism.get("taxonId")
        return int(taxon_id) if taxon_id is not None else None

    def _get(self, endpoint: str, params: dict[str, str]) -> Any:
        """Make GET request with retry logic.

        Returns None for 400/404 (unknown or malformed accession).
        Retries with exponential backoff on 5xx, 429 and connection errors.
        """
        client = self._get_client()
        last_exception: Exception | None = None
        delay = self.retry_delay

        for attempt in range(self.max_retries + 1):
            try:
                response = client.get(endpoint, params=params)
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                last_exception = e
                status_code = e.response.status_code

                if status_code in (400, 404):
                    return None
                if 400 <= status_code < 500 and status_code != 429:
                    raise UniProtAPIError(
                        f"UniProt API request failed: {status_code}",
                        status_code=status_code,
                    ) from e

                if status_code == 429:
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after:
                        delay = float(retry_after)

                if attempt < self.max_retries:
                    logger.warning(
                        "UniProt API request failed (attempt %d/%d): %s. Retrying in %.1fs...",
                        attempt + 1,
                        self.max_retries + 1,
                        status_code,
                        delay,
                    )
                    time.sleep(delay)
                    delay *= self.retry_backoff

            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.max_retries:
                    logger.warning(
                        "UniProt API connection error (attempt %d/%d): %s. Retrying in %.1fs...",
                        attempt + 1,
                        self.max_retries + 1,
                        str(e),
                        delay,
                    )
                    time.sleep(delay)
                    delay *= self.retry_backoff

        if isinstance(last_exception, httpx.HTTPStatusError):
            raise UniProtAPIError(
                f"UniProt API request failed after {self.max_retries + 1} attempts: "
                f"{last_exception.response.status_code}",
                status_code=last_exception.response.status_code,
            ) from last_exception
        raise UniProtAPIError(
            f"UniProt API request failed after {self.max_retries + 1} attempts: "
            f"{last_exception}"
        ) from last_exception
