# seiscompile/compile/loader.py
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from obspy.geodetics import locations2degrees

from seiscompile.config import CompileConfig
from seiscompile.core.types import Component, CorrectionRecord, Observer, TimeWindow
from seiscompile.errors import (
    AmbiguousCorrectionError, ConfigError, MissingCorrectionError, MissingReferenceWindowError,
)
from seiscompile.io.listfiles import read_data_entry_list, read_event_catalog
from seiscompile.io.windowfile import read_corrections, read_timewindows

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------------------
# Overview
# --------------------------------------------------------------------------------------
# Everything the workers need that does not depend on the traces themselves:
#   * the time windows to compile (after component / data-entry / distance filters),
#   * optional static and mantle corrections, resolved to exactly one per window,
#   * per-event average amplitude ratios,
#   * optional reference-phase windows.
#
# Correction records are paired with windows by one of three named strategies:
#   record     observer, event and component are equal
#   time       record + |window.start - correction.syn_start| < 1.01 s
#   isotropic  time, but an R-component window takes the T-component correction
#
# Ambiguity (more than one matching correction) is fatal. It is detected here,
# once, before any worker starts.
# --------------------------------------------------------------------------------------

SYN_START_TOLERANCE = 1.01  # s

WindowKey = Tuple[Observer, str, Component]


# --------------------------------------------------------------------------------------
# 1) Matching strategies
# --------------------------------------------------------------------------------------
def match_record(c: CorrectionRecord, w: TimeWindow) -> bool:
    return c.observer == w.observer and c.event == w.event and c.component == w.component


def match_time(c: CorrectionRecord, w: TimeWindow) -> bool:
    return match_record(c, w) and abs(w.start - c.syn_start) < SYN_START_TOLERANCE


def match_isotropic(c: CorrectionRecord, w: TimeWindow) -> bool:
    wanted = Component.T if w.component is Component.R else w.component
    return (c.observer == w.observer and c.event == w.event and c.component == wanted
            and abs(w.start - c.syn_start) < SYN_START_TOLERANCE)


MATCHERS: Dict[str, Callable[[CorrectionRecord, TimeWindow], bool]] = {
    "record": match_record,
    "time": match_time,
    "isotropic": match_isotropic,
}


def _candidate_component(strategy: str, w: TimeWindow) -> Component:
    if strategy == "isotropic" and w.component is Component.R:
        return Component.T
    return w.component


class CorrectionTable:
    """
    Correction records indexed by (observer, event, component), queried with a
    named matching strategy.
    """

    def __init__(self, corrections: Iterable[CorrectionRecord], strategy: str = "record", name: str = "static"):
        if strategy not in MATCHERS:
            raise ConfigError(f"Unknown correction matching strategy {strategy!r}; use one of {sorted(MATCHERS)}")
        self.strategy = strategy
        self.name = name
        self._match = MATCHERS[strategy]
        self._by_key: Dict[WindowKey, List[CorrectionRecord]] = defaultdict(list)
        for c in corrections:
            self._by_key[c.key].append(c)

    def __len__(self):
        return sum(len(v) for v in self._by_key.values())

    def __iter__(self):
        for v in self._by_key.values():
            yield from v

    def matches(self, window: TimeWindow) -> List[CorrectionRecord]:
        key = (window.observer, window.event, _candidate_component(self.strategy, window))
        return [c for c in self._by_key.get(key, ()) if self._match(c, window)]

    def resolve(self, window: TimeWindow) -> CorrectionRecord:
        found = self.matches(window)
        if len(found) > 1:
            raise AmbiguousCorrectionError(f"Found {len(found)} {self.name} corrections for window {window}")
        if not found:
            raise MissingCorrectionError(f"Found no {self.name} correction for window {window}")
        return found[0]

    def restricted_to(self, windows: Iterable[TimeWindow]) -> "CorrectionTable":
        """Only the corrections that match at least one of the windows."""
        kept = {}
        for w in windows:
            for c in self.matches(w):
                kept[id(c)] = c
        return CorrectionTable(kept.values(), self.strategy, self.name)


def event_average_ratios(corrections: Iterable[CorrectionRecord]) -> Dict[str, float]:
    """Mean amplitude ratio per event."""
    sums: Dict[str, float] = defaultdict(float)
    counts: Dict[str, int] = defaultdict(int)
    for c in corrections:
        sums[c.event] += c.amplitude_ratio
        counts[c.event] += 1
    return {ev: sums[ev] / counts[ev] for ev in sorted(sums)}


# --------------------------------------------------------------------------------------
# 2) Window filters
# --------------------------------------------------------------------------------------
def filter_windows(
    windows: Iterable[TimeWindow],
    *,
    components: Optional[Set[Component]] = None,
    entries: Optional[Set] = None,
    catalog: Optional[Mapping[str, Tuple[float, float]]] = None,
    min_distance: float = 0.0,
) -> List[TimeWindow]:
    """
    Apply the component, data-entry and epicentral-distance filters.

    Windows whose event is missing from the catalog are dropped when a
    distance filter is active.
    """
    kept = []
    missing_events = set()
    for w in windows:
        if components is not None and w.component not in components:
            continue
        if entries is not None and (w.event, w.observer, w.component) not in entries:
            continue
        if min_distance > 0:
            loc = catalog.get(w.event) if catalog is not None else None
            if loc is None:
                missing_events.add(w.event)
                continue
            dist = locations2degrees(loc[0], loc[1], w.observer.latitude, w.observer.longitude)
            if dist < min_distance:
                continue
        kept.append(w)
    if missing_events:
        logger.warning(f"{len(missing_events)} events are not in the event catalog; their windows are skipped: "
                       f"{sorted(missing_events)[:10]}")
    return kept


# --------------------------------------------------------------------------------------
# 3) Loaded state
# --------------------------------------------------------------------------------------
@dataclass
class LoadedInputs:
    """Read-only state shared by every worker of one compile run."""
    windows: List[TimeWindow]
    static: Optional[CorrectionTable] = None
    mantle: Optional[CorrectionTable] = None
    event_average: Dict[str, float] = field(default_factory=dict)
    reference: Optional[Dict[WindowKey, List[TimeWindow]]] = None

    def __post_init__(self):
        self.windows_by_key: Dict[WindowKey, List[TimeWindow]] = defaultdict(list)
        for w in self.windows:
            self.windows_by_key[w.key].append(w)
        for ws in self.windows_by_key.values():
            ws.sort(key=lambda w: (w.start, w.end, w.phases))

    # ---------------- dictionaries ----------------

    @property
    def observers(self) -> List[Observer]:
        return sorted({w.observer for w in self.windows})

    @property
    def events(self) -> List[str]:
        return sorted({w.event for w in self.windows})

    @property
    def phases(self) -> List[str]:
        return sorted({p for w in self.windows for p in w.phases})

    # ---------------- per-window lookups ----------------

    def windows_for(self, observer: Observer, event: str, component: Component) -> List[TimeWindow]:
        return self.windows_by_key.get((observer, event, component), [])

    def average_ratio(self, event: str) -> float:
        return self.event_average.get(event, 1.0)

    def reference_for(self, window: TimeWindow) -> Optional[TimeWindow]:
        """None when no reference set is loaded; otherwise the unique reference window."""
        if self.reference is None:
            return None
        refs = self.reference.get(window.key, [])
        if len(refs) != 1:
            raise MissingReferenceWindowError(f"Reference timewindow does not exist for {window} ({len(refs)} found)")
        return refs[0]

    def check_unambiguous(self) -> None:
        """Resolve every window against each correction table; raise on the first ambiguity."""
        for table in (self.static, self.mantle):
            if table is None:
                continue
            missing = 0
            for w in self.windows:
                try:
                    table.resolve(w)
                except MissingCorrectionError:
                    missing += 1
            if missing:
                logger.warning(f"{missing} windows have no {table.name} correction and will be skipped")


def load_inputs(config: CompileConfig) -> LoadedInputs:
    """Read windows and corrections named by the configuration."""
    components = {Component.parse(c) for c in config.components}
    entries = read_data_entry_list(config.data_entry_path) if config.data_entry_path else None
    catalog = None
    if config.min_distance > 0:
        catalog = read_event_catalog(config.event_catalog_path)

    windows = filter_windows(read_timewindows(config.timewindow_path), components=components,
                             entries=entries, catalog=catalog, min_distance=config.min_distance)
    logger.info(f"{len(windows)} time windows retained from {config.timewindow_path}")

    static = None
    event_average: Dict[str, float] = {}
    if config.uses_static_correction:
        all_static = CorrectionTable(read_corrections(config.static_correction_path),
                                     config.correction_match, "static")
        static = all_static.restricted_to(windows)
        event_average = event_average_ratios(static)
        logger.info(f"{len(static)} of {len(all_static)} static corrections pair with a window")

    mantle = None
    if config.correct_mantle:
        mantle = CorrectionTable(read_corrections(config.mantle_correction_path),
                                 config.correction_match, "mantle")
        logger.info(f"Using {len(mantle)} mantle corrections")

    reference = None
    if config.timewindow_ref_path is not None:
        refs = filter_windows(read_timewindows(config.timewindow_ref_path), components=components,
                              catalog=catalog, min_distance=config.min_distance)
        reference = defaultdict(list)
        for w in refs:
            reference[w.key].append(w)
        reference = dict(reference)
        logger.info(f"{len(refs)} reference windows retained from {config.timewindow_ref_path}")

    inputs = LoadedInputs(windows, static, mantle, event_average, reference)
    inputs.check_unambiguous()
    return inputs
