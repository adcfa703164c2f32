# seiscompile/core/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

# Fixed widths used by every binary file in the pipeline
OBSERVER_NAME_LENGTH = 8
EVENT_ID_LENGTH = 15
PHASE_NAME_LENGTH = 16
MAX_PHASES = 10


class Component(Enum):
    """Seismogram component and its one-byte code in binary files."""
    Z = 1
    R = 2
    T = 3

    @classmethod
    def of_code(cls, code: int) -> "Component":
        try:
            return cls(code)
        except ValueError:
            raise ValueError(f"Invalid component code {code}; components are Z(1) R(2) T(3)") from None

    @classmethod
    def parse(cls, value) -> "Component":
        if isinstance(value, Component):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Invalid component {value!r}; use Z, R or T") from None


@dataclass(frozen=True, order=True)
class Observer:
    """
    A receiving station. Identity is (station, network); the position is
    carried along but does not take part in equality, so that an observer
    read from a float32 SAC header matches the one from a window file.
    """
    station: str
    network: str
    latitude: float = field(default=0.0, compare=False)
    longitude: float = field(default=0.0, compare=False)

    def __post_init__(self):
        if len(self.station) > OBSERVER_NAME_LENGTH or len(self.network) > OBSERVER_NAME_LENGTH:
            raise ValueError(f"Station and network names must be {OBSERVER_NAME_LENGTH} or less letters: "
                             f"{self.station!r} {self.network!r}")

    @property
    def id(self) -> str:
        return f"{self.station}_{self.network}"

    @classmethod
    def from_id(cls, observer_id: str, latitude: float = 0.0, longitude: float = 0.0) -> "Observer":
        station, network = observer_id.split("_", 1)
        return cls(station, network, latitude, longitude)

    def __str__(self):
        return self.id


@dataclass(frozen=True, order=True)
class FullPosition:
    """Spatial point (degrees, degrees, km from the Earth's centre)."""
    latitude: float
    longitude: float
    radius: float


@dataclass(frozen=True)
class TimeWindow:
    event: str
    observer: Observer
    component: Component
    phases: Tuple[str, ...]
    start: float
    end: float

    @property
    def key(self) -> Tuple[Observer, str, Component]:
        return (self.observer, self.event, self.component)

    @property
    def length(self) -> float:
        return self.end - self.start

    def __str__(self):
        return (f"{self.observer} {self.event} {self.component.name} "
                f"{' '.join(self.phases)} [{self.start:.3f}, {self.end:.3f})")


@dataclass(frozen=True)
class CorrectionRecord:
    """Static (or mantle) time-shift and amplitude-ratio (obs/syn) for one window."""
    event: str
    observer: Observer
    component: Component
    syn_start: float
    time_shift: float
    amplitude_ratio: float
    phases: Tuple[str, ...] = ()

    @property
    def key(self) -> Tuple[Observer, str, Component]:
        return (self.observer, self.event, self.component)
