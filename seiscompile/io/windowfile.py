# seiscompile/io/windowfile.py
"""
Binary time-window and static-correction files.

Both share one header layout (big-endian):

    nObserver:u16 nEvent:u16 nPhase:u16
    observer[nObserver]: station(pad8) network(pad8) lat:f64 lon:f64
    event[nEvent]:       id(pad15)
    phase[nPhase]:       name(pad16)

followed by fixed-size entries:

    window     (33 bytes): obs:u16 event:u16 phase[10]:i16 component:u8 start:f32 end:f32
    correction (37 bytes): obs:u16 event:u16 phase[10]:i16 component:u8 synStart:f32 shift:f32 ratio:f32

Unused phase slots hold -1.
"""
from __future__ import annotations

import logging
import struct
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

from seiscompile.core.types import (
    Component, CorrectionRecord, Observer, TimeWindow,
    EVENT_ID_LENGTH, MAX_PHASES, OBSERVER_NAME_LENGTH, PHASE_NAME_LENGTH,
)
from seiscompile.errors import DatasetFormatError

logger = logging.getLogger(__name__)

_COUNTS = struct.Struct(">HHH")
_OBSERVER = struct.Struct(f">{OBSERVER_NAME_LENGTH}s{OBSERVER_NAME_LENGTH}sdd")
_EVENT = struct.Struct(f">{EVENT_ID_LENGTH}s")
_PHASE = struct.Struct(f">{PHASE_NAME_LENGTH}s")
_WINDOW = struct.Struct(f">HH{MAX_PHASES}hBff")
_CORRECTION = struct.Struct(f">HH{MAX_PHASES}hBfff")

WINDOW_BYTES = _WINDOW.size          # 33
CORRECTION_BYTES = _CORRECTION.size  # 37


# --------------------------------------------------------------------------------------
# Fixed-width strings
# --------------------------------------------------------------------------------------
def pad(s: str, width: int) -> bytes:
    b = s.encode("ascii")
    if len(b) > width:
        raise ValueError(f"{s!r} is longer than {width} characters")
    return b.ljust(width, b" ")


def unpad(b: bytes) -> str:
    return b.decode("ascii").strip().strip("\x00")


# --------------------------------------------------------------------------------------
# Shared header
# --------------------------------------------------------------------------------------
def _dictionaries(items) -> Tuple[List[Observer], List[str], List[str]]:
    observers = sorted({i.observer for i in items})
    events = sorted({i.event for i in items})
    phases = sorted({p for i in items for p in i.phases})
    return observers, events, phases


def _write_header(f, observers, events, phases) -> None:
    f.write(_COUNTS.pack(len(observers), len(events), len(phases)))
    for o in observers:
        f.write(_OBSERVER.pack(pad(o.station, OBSERVER_NAME_LENGTH), pad(o.network, OBSERVER_NAME_LENGTH),
                               o.latitude, o.longitude))
    for e in events:
        f.write(_EVENT.pack(pad(e, EVENT_ID_LENGTH)))
    for p in phases:
        f.write(_PHASE.pack(pad(p, PHASE_NAME_LENGTH)))


def _read_header(buf: bytes, path) -> Tuple[List[Observer], List[str], List[str], int]:
    if len(buf) < _COUNTS.size:
        raise DatasetFormatError(f"{path} is too short to hold a header")
    nobs, nev, nph = _COUNTS.unpack_from(buf, 0)
    pos = _COUNTS.size
    need = pos + nobs * _OBSERVER.size + nev * _EVENT.size + nph * _PHASE.size
    if len(buf) < need:
        raise DatasetFormatError(f"{path} header is truncated")
    observers = []
    for _ in range(nobs):
        sta, net, lat, lon = _OBSERVER.unpack_from(buf, pos)
        observers.append(Observer(unpad(sta), unpad(net), lat, lon))
        pos += _OBSERVER.size
    events = []
    for _ in range(nev):
        events.append(unpad(_EVENT.unpack_from(buf, pos)[0]))
        pos += _EVENT.size
    phases = []
    for _ in range(nph):
        phases.append(unpad(_PHASE.unpack_from(buf, pos)[0]))
        pos += _PHASE.size
    return observers, events, phases, pos


def _phase_indices(phases: Sequence[str], phase_map) -> List[int]:
    if len(phases) > MAX_PHASES:
        raise ValueError(f"At most {MAX_PHASES} phases, got {len(phases)}")
    idx = [phase_map[p] for p in phases]
    return idx + [-1] * (MAX_PHASES - len(idx))


def _phases_from(indices, phases) -> Tuple[str, ...]:
    return tuple(phases[i] for i in indices if i != -1)


def _body(buf: bytes, pos: int, size: int, path) -> Iterable[int]:
    body = len(buf) - pos
    if body % size != 0:
        raise DatasetFormatError(f"{path} has some problems: {body} bytes of entries is not a multiple of {size}")
    return range(pos, len(buf), size)


# --------------------------------------------------------------------------------------
# Time windows
# --------------------------------------------------------------------------------------
def write_timewindows(windows: Iterable[TimeWindow], path) -> Path:
    windows = list(windows)
    if not windows:
        raise ValueError("No time windows to write")
    observers, events, phases = _dictionaries(windows)
    omap = {o: i for i, o in enumerate(observers)}
    emap = {e: i for i, e in enumerate(events)}
    pmap = {p: i for i, p in enumerate(phases)}
    path = Path(path)
    with open(path, "wb") as f:
        _write_header(f, observers, events, phases)
        for w in windows:
            f.write(_WINDOW.pack(omap[w.observer], emap[w.event], *_phase_indices(w.phases, pmap),
                                 w.component.value, w.start, w.end))
    logger.info(f"Wrote {len(windows)} time windows to {path}")
    return path


def read_timewindows(path) -> List[TimeWindow]:
    buf = Path(path).read_bytes()
    observers, events, phases, pos = _read_header(buf, path)
    out = []
    for off in _body(buf, pos, _WINDOW.size, path):
        vals = _WINDOW.unpack_from(buf, off)
        iobs, iev = vals[0], vals[1]
        idx = vals[2:2 + MAX_PHASES]
        comp, start, end = vals[2 + MAX_PHASES:]
        out.append(TimeWindow(events[iev], observers[iobs], Component.of_code(comp),
                              _phases_from(idx, phases), float(start), float(end)))
    logger.info(f"Read {len(out)} time windows from {path}")
    return out


# --------------------------------------------------------------------------------------
# Static / mantle corrections
# --------------------------------------------------------------------------------------
def write_corrections(corrections: Iterable[CorrectionRecord], path) -> Path:
    corrections = list(corrections)
    observers, events, phases = _dictionaries(corrections)
    omap = {o: i for i, o in enumerate(observers)}
    emap = {e: i for i, e in enumerate(events)}
    pmap = {p: i for i, p in enumerate(phases)}
    path = Path(path)
    with open(path, "wb") as f:
        _write_header(f, observers, events, phases)
        for c in corrections:
            f.write(_CORRECTION.pack(omap[c.observer], emap[c.event], *_phase_indices(c.phases, pmap),
                                     c.component.value, c.syn_start, c.time_shift, c.amplitude_ratio))
    logger.info(f"Wrote {len(corrections)} corrections to {path}")
    return path


def read_corrections(path) -> List[CorrectionRecord]:
    buf = Path(path).read_bytes()
    observers, events, phases, pos = _read_header(buf, path)
    out = []
    for off in _body(buf, pos, _CORRECTION.size, path):
        vals = _CORRECTION.unpack_from(buf, off)
        iobs, iev = vals[0], vals[1]
        idx = vals[2:2 + MAX_PHASES]
        comp, syn_start, shift, ratio = vals[2 + MAX_PHASES:]
        out.append(CorrectionRecord(events[iev], observers[iobs], Component.of_code(comp),
                                    float(syn_start), float(shift), float(ratio),
                                    _phases_from(idx, phases)))
    logger.info(f"Read {len(out)} corrections from {path}")
    return out
