# seiscompile/io/listfiles.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Set, Tuple

import pandas as pd

from seiscompile.core.types import Component, Observer, TimeWindow

logger = logging.getLogger(__name__)

# (event, observer, component) triple used to select windows
DataEntry = Tuple[str, Observer, Component]


def write_observer_list(observers: Iterable[Observer], path) -> Path:
    """One line per observer: station network latitude longitude."""
    df = pd.DataFrame(
        [(o.station, o.network, o.latitude, o.longitude) for o in sorted(set(observers))],
        columns=["station", "network", "latitude", "longitude"],
    )
    df.to_csv(path, sep=" ", header=False, index=False)
    return Path(path)


def read_observer_list(path) -> Set[Observer]:
    df = pd.read_csv(path, sep=r"\s+", header=None, names=["station", "network", "latitude", "longitude"],
                     dtype={"station": str, "network": str}, comment="#")
    return {Observer(r.station, r.network, float(r.latitude), float(r.longitude)) for r in df.itertuples()}


def write_event_list(events: Iterable[str], path) -> Path:
    pd.DataFrame(sorted(set(events)), columns=["event"]).to_csv(path, header=False, index=False)
    return Path(path)


def read_event_list(path) -> Set[str]:
    df = pd.read_csv(path, sep=r"\s+", header=None, usecols=[0], dtype=str, comment="#")
    return set(df[0].str.strip())


def write_data_entry_list(windows: Iterable[TimeWindow], path) -> Path:
    """One line per (event, observer, component): event station network latitude longitude component."""
    rows = sorted({(w.event, w.observer.station, w.observer.network,
                    w.observer.latitude, w.observer.longitude, w.component.name) for w in windows})
    pd.DataFrame(rows).to_csv(path, sep=" ", header=False, index=False)
    return Path(path)


def read_data_entry_list(path) -> Set[DataEntry]:
    df = pd.read_csv(path, sep=r"\s+", header=None, comment="#",
                     names=["event", "station", "network", "latitude", "longitude", "component"],
                     dtype={"event": str, "station": str, "network": str, "component": str})
    entries = set()
    for r in df.itertuples():
        entries.add((r.event, Observer(r.station, r.network, float(r.latitude), float(r.longitude)),
                     Component.parse(r.component)))
    logger.info(f"Read {len(entries)} data entries from {path}")
    return entries


def read_event_catalog(path) -> Dict[str, Tuple[float, float]]:
    """
    Event locations from a CSV table with at least the columns
    event_id, latitude, longitude (depth, magnitude and others are ignored).
    """
    df = pd.read_csv(path, dtype={"event_id": str})
    missing = {"event_id", "latitude", "longitude"} - set(df.columns)
    if missing:
        raise ValueError(f"Event catalog {path} lacks columns {sorted(missing)}")
    df = df.dropna(subset=["latitude", "longitude"])
    return {str(r.event_id).strip(): (float(r.latitude), float(r.longitude)) for r in df.itertuples()}
