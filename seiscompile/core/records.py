# seiscompile/core/records.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from seiscompile.core.types import Component, FullPosition, Observer, MAX_PHASES

# --------------------------------------------------------------------------------------
# A waveform record is the identity + payload of one compiled trace segment.
# Observed, synthetic and partial-derivative records share one dataclass; a
# partial derivative is a record whose `partial` field is set (tagged variant).
# --------------------------------------------------------------------------------------

# Pairing tolerances for is_pair()
PERIOD_EPSILON = 0.1      # s
TIME_SHIFT_MAX = 20.0     # s


class WaveformKind(Enum):
    OBS = "obs"
    SYN = "syn"
    PARTIAL = "partial"


class ParameterType(Enum):
    SOURCE = "source"
    RECEIVER = "receiver"
    LAYER = "layer"
    VOXEL = "voxel"


class VariableType(Enum):
    RHO = "rho"
    LAMBDA = "lambda"
    MU = "mu"
    KAPPA = "kappa"
    LAMBDA2MU = "lambda2mu"
    A = "A"
    C = "C"
    F = "F"
    L = "L"
    N = "N"
    VP = "Vp"
    VS = "Vs"
    R = "R"
    Q = "Q"
    TIME = "time"


# One-byte partial type codes; layer (1-D) codes are offset by 30 for voxels (3-D)
_LAYER_CODES = {
    VariableType.RHO: 0, VariableType.LAMBDA: 1, VariableType.MU: 2, VariableType.KAPPA: 3,
    VariableType.LAMBDA2MU: 4,
    VariableType.A: 11, VariableType.C: 12, VariableType.F: 13, VariableType.L: 14, VariableType.N: 15,
    VariableType.VP: 21, VariableType.VS: 22, VariableType.R: 23, VariableType.Q: 24,
}
_VOXEL_OFFSET = 30
_TIME_CODES = {ParameterType.SOURCE: 80, ParameterType.RECEIVER: 90}


def partial_type_code(parameter_type: ParameterType, variable_type: VariableType) -> int:
    """Code written to the index file for a (parameter, variable) combination."""
    if parameter_type in _TIME_CODES:
        if variable_type is not VariableType.TIME:
            raise ValueError(f"No partial type for {parameter_type.name} {variable_type.name}")
        return _TIME_CODES[parameter_type]
    if variable_type not in _LAYER_CODES:
        raise ValueError(f"No partial type for {parameter_type.name} {variable_type.name}")
    code = _LAYER_CODES[variable_type]
    return code + _VOXEL_OFFSET if parameter_type is ParameterType.VOXEL else code


def partial_type_from_code(code: int) -> Tuple[ParameterType, VariableType]:
    for ptype, tcode in _TIME_CODES.items():
        if code == tcode:
            return ptype, VariableType.TIME
    ptype = ParameterType.LAYER
    if code >= _VOXEL_OFFSET:
        ptype = ParameterType.VOXEL
        code -= _VOXEL_OFFSET
    for vtype, vcode in _LAYER_CODES.items():
        if vcode == code:
            return ptype, vtype
    raise ValueError(f"No partial type for code {code}")


@dataclass(frozen=True)
class PartialMeta:
    parameter_type: ParameterType
    variable_type: VariableType
    position: FullPosition

    @property
    def code(self) -> int:
        return partial_type_code(self.parameter_type, self.variable_type)


@dataclass(frozen=True)
class WaveformRecord:
    """
    Immutable description of one compiled waveform.

    Equality and hashing use the identity fields only; `kind`, `phases`,
    `data` and `offset` are ignored so an observed and a synthetic record of
    the same window compare equal.

    `data` is either empty ("not yet populated") or exactly `npts` samples.
    `offset` is the byte position in the payload file; -1 until a writer
    assigns it.
    """
    kind: WaveformKind = field(compare=False)
    observer: Observer
    event: str
    component: Component
    min_period: float
    max_period: float
    start_time: float
    sampling_hz: float
    npts: int
    convolved: bool
    phases: Tuple[str, ...] = field(default=(), compare=False)
    data: np.ndarray = field(default_factory=lambda: np.empty(0), compare=False, repr=False)
    offset: int = field(default=-1, compare=False)
    partial: Optional[PartialMeta] = None

    def __post_init__(self):
        data = np.asarray(self.data, dtype=np.float64)
        if data.ndim != 1:
            raise ValueError("Waveform data must be one-dimensional")
        if data.size not in (0, self.npts):
            raise ValueError(f"Data length {data.size} does not match npts {self.npts}")
        if len(self.phases) > MAX_PHASES:
            raise ValueError(f"At most {MAX_PHASES} phases per record, got {len(self.phases)}")
        if (self.kind is WaveformKind.PARTIAL) != (self.partial is not None):
            raise ValueError("Partial-derivative metadata must be given for, and only for, PARTIAL records")
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "phases", tuple(self.phases))

    @property
    def period_range(self) -> Tuple[float, float]:
        return (self.min_period, self.max_period)

    @property
    def is_partial(self) -> bool:
        return self.partial is not None

    @property
    def has_data(self) -> bool:
        return self.data.size > 0

    def with_data(self, data) -> "WaveformRecord":
        return replace(self, data=data)

    def with_offset(self, offset: int) -> "WaveformRecord":
        return replace(self, offset=offset)

    def __str__(self):
        return (f"{self.observer} {self.event} {self.component.name} {self.kind.name} "
                f"{self.start_time:.3f} {self.npts} {self.sampling_hz:g} "
                f"{self.min_period:g}-{self.max_period:g} {' '.join(self.phases)}")


def is_pair(a: WaveformRecord, b: WaveformRecord) -> bool:
    """
    Whether two records describe the same window, ignoring observed/synthetic
    and phases. Start times and periods are compared with tolerances because
    observed start times carry the applied time shift.
    """
    return (a.observer == b.observer and a.event == b.event and a.component == b.component
            and a.npts == b.npts and a.sampling_hz == b.sampling_hz
            and abs(a.start_time - b.start_time) <= TIME_SHIFT_MAX
            and abs(a.min_period - b.min_period) <= PERIOD_EPSILON
            and abs(a.max_period - b.max_period) <= PERIOD_EPSILON)
