# seiscompile/io/dataset.py
"""
Binary waveform datasets: an index file plus a payload file.

Index file (big-endian)
-----------------------
header
    observerCount:u16 eventCount:u16 periodRangeCount:u16 phaseCount:u16 [positionCount:u16]
    observer[]: station(pad8) network(pad8) lat:f64 lon:f64
    event[]:    id(pad15)
    period[]:   min:f64 max:f64
    phase[]:    name(pad16)
    [position[]: lat:f64 lon:f64 radius:f64]
record (repeated)
    kind:bool observer:u16 event:u16 component:u8 period:u8 phase[10]:i16
    start:f32 npts:i32 samplingHz:f32 convolved:bool offset:i64
    [partialType:u8 position:u16]

The bracketed parts exist only in partial-derivative mode, which is fixed by
whether a position dictionary is given when the writer is created. The kind
flag is True for observed records.

Payload file
------------
npts f64 samples per record, in append order; `offset` is the byte position
of the first sample.
"""
from __future__ import annotations

import logging
import os
import struct
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from seiscompile.core.records import (
    PartialMeta, WaveformKind, WaveformRecord, partial_type_from_code,
)
from seiscompile.core.types import (
    Component, FullPosition, Observer,
    EVENT_ID_LENGTH, MAX_PHASES, OBSERVER_NAME_LENGTH, PHASE_NAME_LENGTH,
)
from seiscompile.errors import DatasetFormatError, DictionaryLookupError, WriterModeError
from seiscompile.io.windowfile import pad, unpad

logger = logging.getLogger(__name__)

PERIOD_TOLERANCE = 1e-9
MAX_PERIOD_RANGES = 255     # period index is one byte

_U16 = struct.Struct(">H")
_OBSERVER = struct.Struct(f">{OBSERVER_NAME_LENGTH}s{OBSERVER_NAME_LENGTH}sdd")
_EVENT = struct.Struct(f">{EVENT_ID_LENGTH}s")
_PERIOD = struct.Struct(">dd")
_PHASE = struct.Struct(f">{PHASE_NAME_LENGTH}s")
_POSITION = struct.Struct(">ddd")
_RECORD = struct.Struct(f">?HHBB{MAX_PHASES}hfif?q")
_PARTIAL_TAIL = struct.Struct(">BH")
_SAMPLE = np.dtype(">f8")

RECORD_BYTES = _RECORD.size
PARTIAL_RECORD_BYTES = _RECORD.size + _PARTIAL_TAIL.size


def _has_duplicates(period_ranges: Sequence[Tuple[float, float]]) -> bool:
    for i in range(len(period_ranges) - 1):
        for j in range(i + 1, len(period_ranges)):
            if tuple(period_ranges[i]) == tuple(period_ranges[j]):
                return True
    return False


class WaveformDataWriter:
    """
    Writes waveform records to an index/payload file pair.

    All dictionaries are written when the writer is created and never change.
    append() is serialized by a writer-wide lock, so one writer may be shared
    between worker threads.
    """

    def __init__(
        self,
        index_path,
        payload_path,
        observers: Iterable[Observer],
        events: Iterable[str],
        period_ranges: Sequence[Tuple[float, float]],
        phases: Iterable[str],
        positions: Optional[Iterable[FullPosition]] = None,
    ):
        period_ranges = [(float(a), float(b)) for a, b in period_ranges]
        if _has_duplicates(period_ranges):
            raise ValueError(f"Input period ranges have duplication: {period_ranges}")
        if len(period_ranges) > MAX_PERIOD_RANGES:
            raise ValueError(f"At most {MAX_PERIOD_RANGES} period ranges, got {len(period_ranges)}")

        self.index_path = Path(index_path)
        self.payload_path = Path(payload_path)
        self.observers = list(observers)
        self.events = list(events)
        self.period_ranges = period_ranges
        self.phases = list(phases)
        self.positions = None if positions is None else list(positions)
        self.partial_mode = self.positions is not None

        self._observer_map = {o: i for i, o in enumerate(self.observers)}
        self._event_map = {e: i for i, e in enumerate(self.events)}
        self._phase_map = {p: i for i, p in enumerate(self.phases)}
        self._position_map = {p: i for i, p in enumerate(self.positions or [])}

        self._lock = threading.Lock()
        self._closed = False
        self.n_records = 0

        self._index = open(self.index_path, "wb")
        try:
            self._payload = open(self.payload_path, "wb")
        except OSError:
            self._index.close()
            raise
        self._payload_size = 0
        try:
            self._write_header()
        except BaseException:
            self._index.close()
            self._payload.close()
            raise

    # ---------------- header ----------------

    def _write_header(self) -> None:
        f = self._index
        f.write(_U16.pack(len(self.observers)))
        f.write(_U16.pack(len(self.events)))
        f.write(_U16.pack(len(self.period_ranges)))
        f.write(_U16.pack(len(self.phases)))
        if self.partial_mode:
            f.write(_U16.pack(len(self.positions)))
        for o in self.observers:
            f.write(_OBSERVER.pack(pad(o.station, OBSERVER_NAME_LENGTH), pad(o.network, OBSERVER_NAME_LENGTH),
                                   o.latitude, o.longitude))
        for e in self.events:
            f.write(_EVENT.pack(pad(e, EVENT_ID_LENGTH)))
        for lo, hi in self.period_ranges:
            f.write(_PERIOD.pack(lo, hi))
        for p in self.phases:
            f.write(_PHASE.pack(pad(p, PHASE_NAME_LENGTH)))
        if self.partial_mode:
            for pos in self.positions:
                f.write(_POSITION.pack(pos.latitude, pos.longitude, pos.radius))

    # ---------------- lookups ----------------

    def _lookup(self, mapping: Dict, key, what: str, record: WaveformRecord) -> int:
        try:
            return mapping[key]
        except KeyError:
            raise DictionaryLookupError(f"No such {what}: {key} in {self.index_path.name} for record {record}") from None

    def period_index(self, min_period: float, max_period: float) -> int:
        for i, (lo, hi) in enumerate(self.period_ranges):
            if abs(lo - min_period) < PERIOD_TOLERANCE and abs(hi - max_period) < PERIOD_TOLERANCE:
                return i
        raise DictionaryLookupError(
            f"Period range ({min_period}, {max_period}) is not among the {len(self.period_ranges)} "
            f"ranges of {self.index_path.name}: {self.period_ranges}")

    # ---------------- appending ----------------

    def append(self, record: WaveformRecord) -> WaveformRecord:
        """
        Write one record and its samples. Returns a copy of the record carrying
        the payload offset actually used; any offset set by the caller is ignored.
        """
        if record.is_partial != self.partial_mode:
            mode = "partial-derivative" if self.partial_mode else "observed/synthetic"
            raise WriterModeError(f"{self.index_path.name} accepts only {mode} records, got {record.kind.name}")

        iobs = self._lookup(self._observer_map, record.observer, "observer", record)
        iev = self._lookup(self._event_map, record.event, "event", record)
        iper = self.period_index(record.min_period, record.max_period)
        phase_idx = [self._lookup(self._phase_map, p, "phase", record) for p in record.phases]
        phase_idx += [-1] * (MAX_PHASES - len(phase_idx))
        tail = b""
        if self.partial_mode:
            ipos = self._lookup(self._position_map, record.partial.position, "position", record)
            tail = _PARTIAL_TAIL.pack(record.partial.code, ipos)
        samples = np.asarray(record.data, dtype=_SAMPLE).tobytes()

        with self._lock:
            if self._closed:
                raise WriterModeError(f"{self.index_path.name} is closed")
            offset = self._payload_size
            self._payload.write(samples)
            self._payload_size += len(samples)
            # convolved is written as configured, also for observed records
            self._index.write(_RECORD.pack(
                record.kind is WaveformKind.OBS, iobs, iev, record.component.value, iper, *phase_idx,
                record.start_time, record.npts, record.sampling_hz, bool(record.convolved), offset,
            ) + tail)
            self.n_records += 1
        return record.with_offset(offset)

    # ---------------- lifecycle ----------------

    def flush(self) -> None:
        with self._lock:
            if not self._closed:
                self._index.flush()
                self._payload.flush()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._index.close()
            finally:
                self._payload.close()
        logger.debug(f"Closed {self.index_path.name} with {self.n_records} records")

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


# --------------------------------------------------------------------------------------
# Reading
# --------------------------------------------------------------------------------------
class DatasetHeader:
    def __init__(self, observers, events, period_ranges, phases, positions=None):
        self.observers = observers
        self.events = events
        self.period_ranges = period_ranges
        self.phases = phases
        self.positions = positions

    @property
    def partial_mode(self) -> bool:
        return self.positions is not None


def _read_header(buf: bytes, partial: bool, path) -> Tuple[DatasetHeader, int]:
    n = 5 if partial else 4
    if len(buf) < 2 * n:
        raise DatasetFormatError(f"{path} is too short to hold a header")
    counts = [_U16.unpack_from(buf, 2 * i)[0] for i in range(n)]
    nobs, nev, nper, nph = counts[:4]
    npos = counts[4] if partial else 0
    need = (2 * n + nobs * _OBSERVER.size + nev * _EVENT.size + nper * _PERIOD.size
            + nph * _PHASE.size + npos * _POSITION.size)
    if len(buf) < need:
        raise DatasetFormatError(f"{path} header is truncated")
    pos = 2 * n
    observers = []
    for _ in range(nobs):
        sta, net, lat, lon = _OBSERVER.unpack_from(buf, pos)
        observers.append(Observer(unpad(sta), unpad(net), lat, lon))
        pos += _OBSERVER.size
    events = []
    for _ in range(nev):
        events.append(unpad(_EVENT.unpack_from(buf, pos)[0]))
        pos += _EVENT.size
    periods = []
    for _ in range(nper):
        periods.append(_PERIOD.unpack_from(buf, pos))
        pos += _PERIOD.size
    phases = []
    for _ in range(nph):
        phases.append(unpad(_PHASE.unpack_from(buf, pos)[0]))
        pos += _PHASE.size
    positions = None
    if partial:
        positions = []
        for _ in range(npos):
            positions.append(FullPosition(*_POSITION.unpack_from(buf, pos)))
            pos += _POSITION.size
    return DatasetHeader(observers, events, periods, phases, positions), pos


def read_dataset(index_path, payload_path=None, partial: bool = False) -> Tuple[DatasetHeader, List[WaveformRecord]]:
    """
    Read an index file (and optionally its payload). Records come back in
    append order with their offsets; start time and sampling rate have float32
    precision as stored.
    """
    index_path = Path(index_path)
    buf = index_path.read_bytes()
    header, pos = _read_header(buf, partial, index_path)
    size = PARTIAL_RECORD_BYTES if partial else RECORD_BYTES
    if (len(buf) - pos) % size != 0:
        raise DatasetFormatError(f"{index_path} has a truncated record section")

    payload = None
    if payload_path is not None:
        payload = np.memmap(payload_path, dtype=_SAMPLE, mode="r") if os.path.getsize(payload_path) else np.empty(0, _SAMPLE)

    records = []
    for off in range(pos, len(buf), size):
        vals = _RECORD.unpack_from(buf, off)
        is_obs, iobs, iev, comp, iper = vals[:5]
        phase_idx = vals[5:5 + MAX_PHASES]
        start, npts, hz, convolved, data_offset = vals[5 + MAX_PHASES:]
        lo, hi = header.period_ranges[iper]
        partial_meta = None
        kind = WaveformKind.OBS if is_obs else WaveformKind.SYN
        if partial:
            code, ipos = _PARTIAL_TAIL.unpack_from(buf, off + _RECORD.size)
            ptype, vtype = partial_type_from_code(code)
            partial_meta = PartialMeta(ptype, vtype, header.positions[ipos])
            kind = WaveformKind.PARTIAL
        data = np.empty(0)
        if payload is not None:
            first = data_offset // _SAMPLE.itemsize
            data = np.array(payload[first:first + npts], dtype=np.float64)
            if data.size != npts:
                raise DatasetFormatError(f"{payload_path} ends before the samples of record at offset {data_offset}")
        records.append(WaveformRecord(
            kind=kind,
            observer=header.observers[iobs],
            event=header.events[iev],
            component=Component.of_code(comp),
            min_period=lo,
            max_period=hi,
            start_time=float(start),
            sampling_hz=float(hz),
            npts=npts,
            convolved=convolved,
            phases=tuple(header.phases[i] for i in phase_idx if i != -1),
            data=data,
            offset=data_offset,
            partial=partial_meta,
        ))
    return header, records
