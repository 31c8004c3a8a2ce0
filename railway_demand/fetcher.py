import asyncio
import logging
from typing import List, Optional

from .cancellation import CancellationToken
from .config import FetchPolicy
from .errors import MalformedPayloadError, TransportError
from .models import PartitionKey, RawRecord
from .sources import PartitionSource

logger = logging.getLogger(__name__)


class PartitionFetcher:
    """Fetches one partition with bounded retries, a per-request timeout and cancellation."""

    def __init__(self, source: PartitionSource, policy: Optional[FetchPolicy] = None):
        self.source = source
        self.policy = policy or FetchPolicy()

    async def fetch(self, key: PartitionKey, token: CancellationToken) -> List[RawRecord]:
        """
        Fetch the raw rows for `key`.

        Failed attempts are retried after `retry_delay * attempt` seconds.

        Raises:
            FetchCancelledError: token fired before or during a request or wait
            TransportError: every attempt failed
        """
        attempts = self.policy.retry_attempts
        last_error: Optional[TransportError] = None
        for attempt in range(1, attempts + 1):
            token.raise_if_cancelled(key.label)
            try:
                return await token.run(self._request(key))
            except TransportError as exc:
                last_error = exc
                if attempt == attempts:
                    break
                delay = self.policy.retry_delay * attempt
                logger.warning(
                    "Attempt %d/%d for %s failed (%s); retrying in %.1fs",
                    attempt,
                    attempts,
                    key.label,
                    exc,
                    delay,
                )
                await token.sleep(delay)

        logger.error("Giving up on %s after %d attempts: %s", key.label, attempts, last_error)
        raise TransportError(
            f"{key.label} failed after {attempts} attempts: {last_error}",
            status=last_error.status if last_error else None,
        ) from last_error

    async def _request(self, key: PartitionKey) -> List[RawRecord]:
        try:
            rows = await asyncio.wait_for(
                self.source.fetch_partition(key.zone, key.query_type),
                timeout=self.policy.request_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"Request timed out after {self.policy.request_timeout:.1f}s"
            ) from exc
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise MalformedPayloadError(f"Expected a list of rows, got {type(rows).__name__}")
        return rows
