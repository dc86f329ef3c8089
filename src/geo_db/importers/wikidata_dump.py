"""
Wikidata dump importer for countries, territorial entities, settlements and languages.

Streams the Wikidata JSON dump (~100GB compressed) straight from the network:

    source stream -> feeder thread -> decompression bridge -> line chunker
        -> record parser -> classifier -> role handlers -> SQLite sink

Records are processed strictly one at a time in dump order. Each record's
inserts finish before the next line is parsed, and the bridge's bounded
buffer stalls the feeder when parsing and inserting fall behind, so memory
stays flat for the whole run.

The import is not resumable: a fatal error (network, decompression, or a
primary-key conflict) stops the run, and the output file must be discarded.
"""

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from ..models import DerivedRow, Entity, Role
from ..store import GeoDatabase
from ..wikidata_time import WikiTime
from .extract import TaxonomySets, classify, extract_rows
from .stream import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DECOMPRESSOR,
    DEFAULT_PROGRESS_INTERVAL,
    DEFAULT_WATERMARK,
    DUMP_URL,
    DecompressionBridge,
    SourceStream,
    ThroughputMeter,
    ThroughputSample,
    iter_lines,
    log_progress,
    parse_record,
    pump,
)

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_EVERY = 10_000


@dataclass
class ImportStats:
    """Counters for one import run."""
    lines: int = 0
    entities: int = 0
    parse_failures: int = 0
    rows_written: int = 0
    roles: Counter = field(default_factory=Counter)

    def summary(self) -> str:
        role_parts = ", ".join(f"{role.value}={self.roles[role]:,}" for role in Role)
        return (
            f"{self.entities:,} entities from {self.lines:,} lines "
            f"({self.parse_failures:,} unparseable), {self.rows_written:,} rows; {role_parts}"
        )


class GeoDumpImporter:
    """
    Drive the dump through classification and extraction into a GeoDatabase.

    The reference instant for temporal qualifiers is fixed when the importer
    is created (wall-clock now unless given), so every record of one run is
    judged against the same instant.
    """

    def __init__(
        self,
        database: GeoDatabase,
        taxonomies: TaxonomySets,
        reference: Optional[WikiTime] = None,
        commit_every: int = DEFAULT_COMMIT_EVERY,
        skip_dissolved: bool = False,
    ):
        self._database = database
        self._taxonomies = taxonomies
        self.reference = reference or WikiTime.now()
        self.commit_every = commit_every
        self.skip_dissolved = skip_dissolved
        self.stats = ImportStats()

    def process_entity(self, entity: Entity) -> list[DerivedRow]:
        """Classify one entity, run every matching handler, and write the rows."""
        roles = classify(entity, self._taxonomies, skip_dissolved=self.skip_dissolved)
        if not roles:
            return []
        self.stats.roles.update(roles)

        rows = extract_rows(entity, roles, self.reference)
        if rows:
            self.stats.rows_written += self._database.insert_rows(entity.id, rows)
        return rows

    def process_lines(
        self,
        lines: Iterable[bytes | str],
        meter: Optional[ThroughputMeter] = None,
        limit: Optional[int] = None,
    ) -> ImportStats:
        """
        Parse and process dump lines sequentially.

        Args:
            lines: Raw dump lines (brackets and trailing commas included)
            meter: Optional throughput meter, sampled once per line
            limit: Stop after this many parsed entities

        Returns:
            The importer's cumulative ImportStats
        """
        since_commit = 0
        for line in lines:
            self.stats.lines += 1
            entity = parse_record(line)
            if entity is None:
                if len(line.strip()) > 1:
                    self.stats.parse_failures += 1
                    logger.debug(f"Line {self.stats.lines}: skipping unparseable record")
                continue

            self.stats.entities += 1
            self.process_entity(entity)

            since_commit += 1
            if since_commit >= self.commit_every:
                self._database.commit()
                since_commit = 0

            if meter is not None:
                meter.add_record()
                meter.maybe_sample()

            if limit and self.stats.entities >= limit:
                logger.info(f"Reached limit of {limit:,} entities")
                break

        self._database.commit()
        return self.stats

    def import_dump(
        self,
        location: str | Path = DUMP_URL,
        decompressor: Sequence[str] = DEFAULT_DECOMPRESSOR,
        watermark: int = DEFAULT_WATERMARK,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        observer: Optional[Callable[[ThroughputSample], None]] = log_progress,
        progress_interval: float = DEFAULT_PROGRESS_INTERVAL,
        limit: Optional[int] = None,
    ) -> ImportStats:
        """
        Stream a compressed dump from a URL or local path into the database.

        Raises:
            DecompressionError: if the decompressor fails
            SinkConflictError: on a fatal primary-key conflict
            OSError: on source read errors
        """
        logger.info(f"Temporal qualifiers are resolved against {self.reference}")
        self._database.set_info("reference_time", str(self.reference))
        self._database.set_info("source", str(location))

        with SourceStream(location) as source, DecompressionBridge(decompressor, watermark=watermark) as bridge:
            meter = ThroughputMeter(observer, interval=progress_interval, total_bytes=source.total_size)
            stop = threading.Event()
            feeder = threading.Thread(
                target=pump,
                args=(source, bridge, meter),
                kwargs={"chunk_size": chunk_size, "stop_event": stop},
                name="dump-feeder",
                daemon=True,
            )
            feeder.start()
            try:
                self.process_lines(iter_lines(bridge.read, meter), meter=meter, limit=limit)
            finally:
                stop.set()
                bridge.close()
                feeder.join(timeout=10)
                if feeder.is_alive():
                    logger.warning("Feeder thread did not stop; abandoning it")

        logger.info(f"Import complete: {self.stats.summary()}")
        return self.stats
