"""One-shot historical backfill from the measurement store."""

from __future__ import annotations

import logging
from operator import attrgetter

from pydht._transport import HistoryTransport
from pydht.exceptions import DhtDecodeError, DhtTransportError
from pydht.models.reading import Reading

_logger = logging.getLogger(__name__)

DEFAULT_PATH = "measurements"


class BackfillLoader:
    """Fetch historical readings and return them sorted, newest ``limit`` only.

    Documents that cannot be decoded are skipped with a warning; only a
    transport failure aborts the load (as :class:`DhtTransportError`).
    """

    def __init__(self, transport: HistoryTransport, *, path: str = DEFAULT_PATH) -> None:
        self._transport = transport
        self._path = path
        self._skipped = 0

    @property
    def skipped(self) -> int:
        """Documents dropped during the last :meth:`load`."""
        return self._skipped

    async def load(self, limit: int) -> list[Reading]:
        if limit < 1:
            raise ValueError("limit must be >= 1")

        # The store may ignore the query; order and limit are re-applied below.
        body = await self._transport.get_json(
            self._path,
            {"orderBy": '"timestamp"', "limitToLast": str(limit)},
        )
        self._skipped = 0
        if body is None:
            _logger.info("Backfill store %s is empty", self._path)
            return []
        if not isinstance(body, dict):
            raise DhtTransportError(
                f"Expected a JSON object from {self._path}, got {type(body).__name__}",
                endpoint=self._path,
            )

        readings: list[Reading] = []
        for key, document in body.items():
            try:
                readings.append(Reading.from_document(document))
            except DhtDecodeError as exc:
                self._skipped += 1
                _logger.warning("Skipping backfill document %s: %s", key, exc)

        readings.sort(key=attrgetter("observed_at"))
        if len(readings) > limit:
            readings = readings[-limit:]

        _logger.info(
            "Backfill loaded %d readings from %s (%d skipped)",
            len(readings),
            self._path,
            self._skipped,
        )
        return readings
