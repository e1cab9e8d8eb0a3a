"""
Binary Depth Log - fixed-capacity circular sample store

One file per anchorage holds the last ~30 days of recorded depth samples so
the tide analyzer can be rebuilt after a restart.

File Layout:
------------
All fields are BIG-ENDIAN. The header records the write cursor so that a
reopened log keeps appending where it left off.

    struct header {            // 32 bytes
        char     magic[4];     // "TWDL"
        uint16   version;      // 1
        uint16   record_size;  // 28
        uint32   capacity;     // number of record slots
        uint32   cursor;       // next slot to write
        uint32   count;        // occupied slots (<= capacity)
        char     reserved[12];
    };

    struct record {            // 28 bytes, no padding
        double   timer;        // epoch milliseconds
        float    depth;        // meters
        double   latitude;
        double   longitude;
    };

The header is followed by `capacity` record slots. Once the cursor reaches
capacity it wraps to slot 0 and overwrites the oldest record.

Usage:
    with DepthLog.open(path, capacity_for_interval(5)) as log:
        log.append_record(sample)

    with DepthLog.open(path, capacity_for_interval(5)) as log:
        log.for_each(analyzer_callback)

    # Diagnostics: never modifies the file
    with DepthLog.open_readonly(path, capacity_for_interval(5)) as log:
        samples = list(log.records())
"""

import logging
import math
import os
import struct
from pathlib import Path
from typing import Callable, Iterator, Union

import numpy as np

from ..interfaces.tide_report import Position, Sample

logger = logging.getLogger(__name__)


LOG_MAGIC = b'TWDL'
LOG_VERSION = 1

HEADER_FORMAT = '>4sHHIII12x'
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)   # 32 bytes

RECORD_FORMAT = '>dfdd'
RECORD_SIZE = struct.calcsize(RECORD_FORMAT)   # 28 bytes

# Same layout as RECORD_FORMAT, used for bulk decoding on replay
RECORD_DTYPE = np.dtype([
    ('timer', '>f8'),
    ('depth', '>f4'),
    ('latitude', '>f8'),
    ('longitude', '>f8'),
])

LOG_DAYS = 30


def capacity_for_interval(record_interval_minutes: float) -> int:
    """Number of slots holding LOG_DAYS of samples at the given cadence."""
    return int(LOG_DAYS * 24 * (60 / record_interval_minutes))


def log_file_name(anchorage_id: int) -> str:
    """
    Log file name for an anchorage.

    Examples:
        1 -> "00001.dat"
        42 -> "00042.dat"
    """
    return f"{anchorage_id:05d}.dat"


def encode_record(sample: Sample) -> bytes:
    return struct.pack(
        RECORD_FORMAT,
        float(sample.timer),
        float(sample.depth),
        float(sample.position.latitude),
        float(sample.position.longitude),
    )


def decode_record(data: bytes) -> Sample:
    timer, depth, latitude, longitude = struct.unpack(RECORD_FORMAT, data)
    return Sample(timer=timer, depth=depth, position=Position(latitude, longitude))


class DepthLog:
    """
    Circular binary log of depth samples.

    Open, use and close a log for every operation; do not keep one open
    across unrelated work.
    """

    def __init__(self, path: Union[str, Path], capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.path = Path(path)
        self.capacity = capacity
        self.cursor = 0
        self.count = 0
        self.read_only = False
        self._file = None

    @classmethod
    def open(cls, path: Union[str, Path], capacity: int) -> "DepthLog":
        """
        Open (or create) the log at path.

        An existing log keeps its contents, cursor and stored capacity. A
        file whose header cannot be read is treated as an empty log and
        reinitialized.
        """
        log = cls(path, capacity)
        log._open()
        return log

    @classmethod
    def open_readonly(cls, path: Union[str, Path], capacity: int) -> "DepthLog":
        """
        Open an existing log for reading only.

        The file is never written: a header that cannot be read yields an
        empty log instead of being reinitialized.

        Raises:
            OSError: If the file cannot be opened
        """
        log = cls(path, capacity)
        log.read_only = True
        log._file = open(log.path, 'rb')
        if not log._read_header():
            logger.warning(f"Depth log {log.path} has no valid header, nothing to read")
            log.cursor = 0
            log.count = 0
        return log

    def _open(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self.path.exists():
            self._file = open(self.path, 'r+b')
            if self._read_header():
                logger.debug(
                    f"Opened depth log {self.path}: capacity={self.capacity}, "
                    f"cursor={self.cursor}, count={self.count}"
                )
                return
            logger.warning(f"Depth log {self.path} has no valid header, starting empty")
        else:
            self._file = open(self.path, 'w+b')
            logger.info(f"Created depth log {self.path} ({self.capacity} records)")

        self.cursor = 0
        self.count = 0
        self._write_header()
        self._file.truncate(HEADER_SIZE + self.capacity * RECORD_SIZE)
        self._file.flush()

    def _read_header(self) -> bool:
        self._file.seek(0)
        raw = self._file.read(HEADER_SIZE)
        if len(raw) < HEADER_SIZE:
            return False

        magic, version, record_size, capacity, cursor, count = struct.unpack(HEADER_FORMAT, raw)
        if magic != LOG_MAGIC or version != LOG_VERSION or record_size != RECORD_SIZE:
            return False
        if capacity == 0 or cursor >= capacity or count > capacity:
            return False

        if capacity != self.capacity:
            logger.warning(
                f"Depth log {self.path} was created with capacity {capacity}, "
                f"requested {self.capacity}; keeping {capacity}"
            )
        self.capacity = capacity
        self.cursor = cursor
        self.count = count
        return True

    def _write_header(self):
        self._file.seek(0)
        self._file.write(struct.pack(
            HEADER_FORMAT,
            LOG_MAGIC,
            LOG_VERSION,
            RECORD_SIZE,
            self.capacity,
            self.cursor,
            self.count,
        ))

    @property
    def closed(self) -> bool:
        return self._file is None

    def append_record(self, sample: Sample):
        """Write sample at the cursor, wrapping over the oldest slot when full."""
        if self._file is None:
            raise ValueError(f"Depth log {self.path} is closed")
        if self.read_only:
            raise ValueError(f"Depth log {self.path} is open read-only")

        self._file.seek(HEADER_SIZE + self.cursor * RECORD_SIZE)
        self._file.write(encode_record(sample))

        self.cursor = (self.cursor + 1) % self.capacity
        self.count = min(self.count + 1, self.capacity)
        self._write_header()
        self._file.flush()

    def records(self) -> Iterator[Sample]:
        """
        Yield stored samples oldest first.

        Never-written slots, records with non-finite fields or a timer that
        does not advance, and a truncated trailing record are skipped.
        """
        if self._file is None:
            raise ValueError(f"Depth log {self.path} is closed")
        if self.count == 0:
            return

        self._file.seek(HEADER_SIZE)
        raw = self._file.read(self.capacity * RECORD_SIZE)
        n_complete = len(raw) // RECORD_SIZE
        if n_complete < self.capacity:
            logger.warning(
                f"Depth log {self.path} is truncated: {n_complete} of "
                f"{self.capacity} slots readable"
            )
        table = np.frombuffer(raw[:n_complete * RECORD_SIZE], dtype=RECORD_DTYPE)

        start = (self.cursor - self.count) % self.capacity
        slots = (start + np.arange(self.count)) % self.capacity

        last_timer = -math.inf
        skipped = 0
        for slot in slots:
            if slot >= n_complete:
                skipped += 1
                continue
            rec = table[slot]
            timer = float(rec['timer'])
            depth = float(rec['depth'])
            lat = float(rec['latitude'])
            lon = float(rec['longitude'])
            if not all(math.isfinite(v) for v in (timer, depth, lat, lon)) or timer <= 0:
                skipped += 1
                continue
            if timer <= last_timer:
                skipped += 1
                continue
            last_timer = timer
            yield Sample(timer=timer, depth=depth, position=Position(lat, lon))

        if skipped:
            logger.debug(f"Skipped {skipped} unusable records in {self.path}")

    def for_each(self, visitor: Callable[[Sample], None]) -> int:
        """Call visitor for every stored sample, oldest first. Returns the count."""
        delivered = 0
        for sample in self.records():
            visitor(sample)
            delivered += 1
        return delivered

    def close(self):
        """Flush and release the file. Safe to call more than once."""
        if self._file is None:
            return
        try:
            if not self.read_only:
                self._file.flush()
                os.fsync(self._file.fileno())
        finally:
            self._file.close()
            self._file = None

    def __enter__(self) -> "DepthLog":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __len__(self) -> int:
        return self.count
