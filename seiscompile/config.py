# seiscompile/config.py
from __future__ import annotations

import json
import math
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from seiscompile.errors import ConfigError

__all__ = [
    "CompileConfig",
    "MATCH_STRATEGIES",
    "load_config",
    "write_default_config",
]

MATCH_STRATEGIES = ("record", "time", "isotropic")

_PATH_FIELDS = (
    "obs_path", "syn_path", "timewindow_path", "timewindow_ref_path",
    "static_correction_path", "mantle_correction_path", "event_catalog_path",
    "data_entry_path", "output_base",
)


def _opt_path(p) -> Optional[Path]:
    if p is None or p == "":
        return None
    return Path(p).expanduser()


@dataclass(frozen=True)
class CompileConfig:
    """
    Settings for one compile run.

    Paths may be given as str or Path. Call .validate() before use; the
    compiler does this for you.
    """

    # Required inputs
    obs_path: Path
    syn_path: Path
    timewindow_path: Path

    # Optional inputs
    timewindow_ref_path: Optional[Path] = None
    static_correction_path: Optional[Path] = None
    mantle_correction_path: Optional[Path] = None
    event_catalog_path: Optional[Path] = None
    data_entry_path: Optional[Path] = None

    # Output
    output_base: Path = Path(".")
    folder_tag: Optional[str] = None
    append_folder_date: bool = False

    # Waveform selection and sampling
    components: Sequence[str] = ("Z", "R", "T")
    sac_sampling_hz: float = 20.0
    final_sampling_hz: float = 1.0
    convolved: bool = True

    # Corrections
    correct_time: bool = False
    correct_amplitude: bool = False
    correct_mantle: bool = False
    correction_match: str = "record"
    min_distance: float = 0.0   # degrees

    # Spectra
    low_freq: float = 0.01
    high_freq: float = 0.08
    freq_oversampling: int = 8

    # Synthetic tests
    add_noise: bool = False
    noise_power: float = 1.0
    noise_seed: Optional[int] = None

    # Engine
    end_margin: float = 10.0           # s before the synthetic end time
    period_probe_limit: Optional[int] = 20
    n_workers: Optional[int] = None

    def __post_init__(self):
        for name in _PATH_FIELDS:
            object.__setattr__(self, name, _opt_path(getattr(self, name)))
        comps = self.components
        if isinstance(comps, str):
            comps = comps.split()
        object.__setattr__(self, "components", tuple(str(c).upper() for c in comps))

    # ---------------- derived ----------------

    @property
    def uses_static_correction(self) -> bool:
        return self.correct_time or self.correct_amplitude

    @property
    def decimation_step(self) -> int:
        return int(round(self.sac_sampling_hz / self.final_sampling_hz))

    @property
    def workers(self) -> int:
        return self.n_workers or os.cpu_count() or 1

    # ---------------- validation ----------------

    def validate(self) -> "CompileConfig":
        if self.sac_sampling_hz <= 0 or self.final_sampling_hz <= 0:
            raise ConfigError("Sampling rates must be positive")
        ratio = self.sac_sampling_hz / self.final_sampling_hz
        if not math.isclose(ratio, round(ratio), rel_tol=0, abs_tol=1e-9) or round(ratio) < 1:
            raise ConfigError(f"final_sampling_hz={self.final_sampling_hz} must divide "
                              f"sac_sampling_hz={self.sac_sampling_hz}")
        if not 0 <= self.low_freq < self.high_freq:
            raise ConfigError(f"Need 0 <= low_freq < high_freq, got {self.low_freq}, {self.high_freq}")
        if self.high_freq > self.sac_sampling_hz / 2:
            raise ConfigError(f"high_freq={self.high_freq} must be <= the Nyquist frequency "
                              f"{self.sac_sampling_hz / 2:g} Hz")
        if self.freq_oversampling < 1:
            raise ConfigError("freq_oversampling must be >= 1")
        if not self.components:
            raise ConfigError("At least one component is required")
        bad = [c for c in self.components if c not in ("Z", "R", "T")]
        if bad:
            raise ConfigError(f"Unknown components {bad}; use Z, R, T")
        if self.correction_match not in MATCH_STRATEGIES:
            raise ConfigError(f"correction_match must be one of {MATCH_STRATEGIES}, got {self.correction_match!r}")
        if self.min_distance < 0:
            raise ConfigError("min_distance must be >= 0")
        if self.end_margin < 0:
            raise ConfigError("end_margin must be >= 0")
        if self.noise_power < 0:
            raise ConfigError("noise_power must be >= 0")
        if self.noise_seed is not None and self.noise_seed < 0:
            raise ConfigError(f"noise_seed must be a non-negative integer, got {self.noise_seed}")
        if self.period_probe_limit is not None and self.period_probe_limit < 1:
            raise ConfigError("period_probe_limit must be >= 1 or None")
        if self.n_workers is not None and self.n_workers < 1:
            raise ConfigError("n_workers must be >= 1 or None")

        self._require_dir("obs_path", self.obs_path)
        self._require_dir("syn_path", self.syn_path)
        self._require_file("timewindow_path", self.timewindow_path)
        if self.timewindow_ref_path is not None:
            self._require_file("timewindow_ref_path", self.timewindow_ref_path)
        if self.uses_static_correction:
            self._require_file("static_correction_path", self.static_correction_path)
        if self.correct_mantle:
            self._require_file("mantle_correction_path", self.mantle_correction_path)
        if self.min_distance > 0:
            self._require_file("event_catalog_path", self.event_catalog_path)
        if self.data_entry_path is not None:
            self._require_file("data_entry_path", self.data_entry_path)
        return self

    @staticmethod
    def _require_file(name: str, p: Optional[Path]) -> None:
        if p is None:
            raise ConfigError(f"{name} must be set")
        if not p.is_file():
            raise ConfigError(f"{name} {p} does not exist")

    @staticmethod
    def _require_dir(name: str, p: Optional[Path]) -> None:
        if p is None:
            raise ConfigError(f"{name} must be set")
        if not p.is_dir():
            raise ConfigError(f"{name} {p} does not exist")

    # ---------------- (de)serialization ----------------

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for name in _PATH_FIELDS:
            if d[name] is not None:
                d[name] = str(d[name])
        d["components"] = list(self.components)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CompileConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {unknown}")
        try:
            return cls(**d)
        except TypeError as e:
            raise ConfigError(str(e)) from e


def load_config(path) -> CompileConfig:
    """
    Read a CompileConfig from .json or .yml/.yaml. Relative input paths are
    resolved against the directory holding the configuration file.
    """
    p = Path(path)
    if not p.is_file():
        raise ConfigError(f"Configuration file {p} does not exist")
    with open(p, "r") as f:
        if p.suffix.lower() in {".yml", ".yaml"}:
            import yaml
            raw = yaml.safe_load(f) or {}
        else:
            raw = json.load(f)
    if not isinstance(raw, dict):
        raise ConfigError(f"{p} must hold a mapping of settings")
    for name in _PATH_FIELDS:
        v = raw.get(name)
        if v and not Path(v).expanduser().is_absolute():
            raw[name] = str(p.parent / v)
    return CompileConfig.from_dict(raw)


_DEFAULT_TEMPLATE = """\
# seiscompile configuration (YAML). Remove the leading '#' to set a value.
obs_path: .                         # root folder with one sub-folder per event (observed SAC)
syn_path: .                         # root folder with one sub-folder per event (synthetic SAC)
timewindow_path: timewindow.dat     # must be set
#timewindow_ref_path:               # reference-phase windows used to normalize spectral amplitude
#static_correction_path: staticCorrection.dat   # required if correct_time or correct_amplitude
#mantle_correction_path: mantleCorrection.dat   # required if correct_mantle
#event_catalog_path: events.csv     # event_id,latitude,longitude; required if min_distance > 0
#data_entry_path: dataEntry.lst     # restrict to these (event, observer, component) entries
#output_base: .
#folder_tag:
#append_folder_date: false
#components: [Z, R, T]
#sac_sampling_hz: 20
#final_sampling_hz: 1               # must divide sac_sampling_hz
#convolved: true
#correct_time: false
#correct_amplitude: false
#correct_mantle: false
#correction_match: record           # record | time | isotropic
#min_distance: 0                    # degrees
#low_freq: 0.01
#high_freq: 0.08
#freq_oversampling: 8
#add_noise: false
#noise_power: 1
#noise_seed:
#end_margin: 10
#period_probe_limit: 20
#n_workers:
"""


def write_default_config(path) -> Path:
    p = Path(path)
    if p.exists():
        raise FileExistsError(f"{p} already exists")
    p.write_text(_DEFAULT_TEMPLATE)
    return p
