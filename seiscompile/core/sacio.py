from __future__ import annotations
"""
sacio.py

SAC trace access for the compile pipeline: file naming conventions for
observed/synthetic traces, header checks and a thin trace wrapper.

Observed traces are named  STA_NET.EVENT.{Z,R,T}
synthetic traces           STA_NET.EVENT.{Zs,Rs,Ts}   (Zsc, Rsc, Tsc if convolved)
and live in one folder per event under the observed/synthetic roots.
"""

import logging
import math
import re
from functools import cached_property
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import numpy as np
from obspy import read

from seiscompile.core.types import Component, Observer

logger = logging.getLogger(__name__)

SAC_UNDEFINED = -12345.0

_NAME_RE = re.compile(
    r"^(?P<station>[^_.]+)_(?P<network>[^.]+)\.(?P<event>[^.]+)\.(?P<component>[ZRT])(?P<suffix>sc|s)?$"
)


def obs_file_name(observer: Observer, event: str, component: Component) -> str:
    return f"{observer.id}.{event}.{component.name}"


def syn_file_name(observer: Observer, event: str, component: Component, convolved: bool) -> str:
    return f"{observer.id}.{event}.{component.name}{'sc' if convolved else 's'}"


def parse_sac_name(name: str) -> Optional[Tuple[str, str, str, Component, str]]:
    """
    Split a trace file name into (station, network, event, component, kind)
    where kind is 'obs', 'syn' or 'conv'. Returns None for foreign files.
    """
    m = _NAME_RE.match(name)
    if not m:
        return None
    kind = {None: "obs", "s": "syn", "sc": "conv"}[m.group("suffix")]
    return (m.group("station"), m.group("network"), m.group("event"),
            Component[m.group("component")], kind)


def event_folders(root) -> List[Path]:
    """Sub-folders of root, sorted by name; each holds the traces of one event."""
    root = Path(root)
    return sorted((p for p in root.iterdir() if p.is_dir()), key=lambda p: p.name)


def iter_obs_files(event_dir: Path, components=None) -> Iterator[Tuple[Path, Tuple]]:
    """Observed trace files in an event folder (sorted), optionally limited to components."""
    for p in sorted(event_dir.iterdir()):
        if not p.is_file():
            continue
        parsed = parse_sac_name(p.name)
        if parsed is None or parsed[4] != "obs":
            continue
        if components is not None and parsed[3] not in components:
            continue
        yield p, parsed


def _undefined_to_zero(v) -> float:
    if v is None:
        return 0.0
    v = float(v)
    return 0.0 if math.isclose(v, SAC_UNDEFINED) else v


class SacTrace:
    """
    One SAC trace: samples as float64, sampling interval, begin/end times and
    the pass band stamped in USER0/USER1 by the filtering step.
    """

    def __init__(self, path, data: np.ndarray, delta: float, b: float,
                 min_period: float, max_period: float,
                 station: str = "", network: str = "",
                 latitude: float = 0.0, longitude: float = 0.0):
        self.path = Path(path)
        self.data = np.asarray(data, dtype=np.float64)
        self.delta = float(delta)
        self.b = float(b)
        self.min_period = min_period
        self.max_period = max_period
        self.station = station
        self.network = network
        self.latitude = latitude
        self.longitude = longitude

    @property
    def npts(self) -> int:
        return self.data.size

    @property
    def e(self) -> float:
        return self.b + (self.npts - 1) * self.delta

    @property
    def period_range(self) -> Tuple[float, float]:
        return (self.min_period, self.max_period)

    def nearest_index(self, t: float) -> int:
        return int(round((t - self.b) / self.delta))

    @cached_property
    def analytic(self) -> np.ndarray:
        from scipy.signal import hilbert
        return hilbert(self.data)

    def __repr__(self):
        return f"SacTrace({self.path.name}, npts={self.npts}, delta={self.delta}, b={self.b})"


def read_sac(path, headonly: bool = False) -> SacTrace:
    """Read a SAC file with ObsPy. Raises OSError/ValueError-like errors from ObsPy unchanged."""
    st = read(str(path), format="SAC", headonly=headonly)
    tr = st[0]
    sac = tr.stats.get("sac", {}) or {}
    data = np.empty(0) if headonly else tr.data
    return SacTrace(
        path,
        data,
        delta=float(tr.stats.delta),
        b=float(sac.get("b", 0.0)),
        min_period=_undefined_to_zero(sac.get("user0")),
        max_period=_undefined_to_zero(sac.get("user1")),
        station=tr.stats.station,
        network=tr.stats.network,
        latitude=_undefined_to_zero(sac.get("stla")),
        longitude=_undefined_to_zero(sac.get("stlo")),
    )


def read_period_band(path) -> Tuple[float, float]:
    """(USER0, USER1) of a SAC file, reading the header only."""
    return read_sac(path, headonly=True).period_range
