from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from obspy import Trace, UTCDateTime
from obspy.core.util import AttribDict

from seiscompile.config import CompileConfig
from seiscompile.core.sacio import obs_file_name, syn_file_name
from seiscompile.core.types import Component, CorrectionRecord, Observer, TimeWindow
from seiscompile.io.windowfile import write_corrections, write_timewindows

SAC_HZ = 20.0
TRACE_SECONDS = 100.0      # b = 0, e = 99.95 s
BAND = (5.0, 100.0)

STA = Observer("STA", "NET", 10.0, 20.0)
STB = Observer("STB", "NET", -5.0, 120.0)


def write_sac(path, data, *, delta=1 / SAC_HZ, observer: Observer = STA, band=BAND) -> Path:
    tr = Trace(data=np.asarray(data, dtype=np.float32))
    tr.stats.delta = delta
    tr.stats.station = observer.station
    tr.stats.network = observer.network
    tr.stats.starttime = UTCDateTime(2000, 1, 1)
    sac = AttribDict()
    if band is not None:
        sac.user0, sac.user1 = band
    sac.stla = observer.latitude
    sac.stlo = observer.longitude
    tr.stats.sac = sac
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tr.write(str(path), format="SAC")
    return path


def waveform(seed: int, scale: float = 1.0, n: int = int(TRACE_SECONDS * SAC_HZ)) -> np.ndarray:
    t = np.arange(n) / SAC_HZ
    rng = np.random.default_rng(seed)
    y = np.sin(2 * np.pi * t / 20.0) + 0.5 * np.sin(2 * np.pi * t / 33.0 + seed) + 0.1 * rng.standard_normal(n)
    return scale * y


class Layout:
    """Observed/synthetic folders and input files under one tmp directory."""

    def __init__(self, root: Path):
        self.root = root
        self.obs = root / "obs"
        self.syn = root / "syn"
        self.obs.mkdir()
        self.syn.mkdir()
        self.timewindow = root / "timewindow.dat"
        self.static = root / "staticCorrection.dat"
        self.mantle = root / "mantleCorrection.dat"
        self.reference = root / "timewindowRef.dat"

    def add_pair(self, event: str, observer: Observer = STA, component: Component = Component.Z, *,
                 seed: int = 1, obs_band=BAND, syn_band=BAND, syn_delta=1 / SAC_HZ,
                 convolved: bool = True, with_syn: bool = True):
        write_sac(self.obs / event / obs_file_name(observer, event, component), waveform(seed, 2.0),
                  observer=observer, band=obs_band)
        if with_syn:
            write_sac(self.syn / event / syn_file_name(observer, event, component, convolved),
                      waveform(seed + 100), delta=syn_delta, observer=observer, band=syn_band)

    def windows(self, *windows: TimeWindow) -> Path:
        return write_timewindows(windows, self.timewindow)

    def corrections(self, *corrections: CorrectionRecord, path=None) -> Path:
        return write_corrections(corrections, path or self.static)

    def config(self, **kw) -> CompileConfig:
        base = dict(obs_path=self.obs, syn_path=self.syn, timewindow_path=self.timewindow,
                    output_base=self.root / "out", n_workers=2)
        base.update(kw)
        return CompileConfig(**base)


@pytest.fixture
def layout(tmp_path) -> Layout:
    return Layout(tmp_path)


def window(event="EV1", observer=STA, component=Component.Z, start=10.0, end=40.0, phases=("S",)) -> TimeWindow:
    return TimeWindow(event, observer, component, tuple(phases), start, end)


def correction(event="EV1", observer=STA, component=Component.Z, syn_start=10.0, shift=0.0, ratio=1.0):
    return CorrectionRecord(event, observer, component, syn_start, shift, ratio, ("S",))
