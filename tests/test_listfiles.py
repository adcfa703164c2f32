from __future__ import annotations

import pytest
from conftest import STA, STB, window

from seiscompile.core.types import Component
from seiscompile.io.listfiles import (
    read_data_entry_list, read_event_catalog, read_event_list, read_observer_list,
    write_data_entry_list, write_event_list, write_observer_list,
)


def test_observer_and_event_lists(tmp_path):
    write_observer_list([STB, STA, STA], tmp_path / "observer.lst")
    lines = (tmp_path / "observer.lst").read_text().splitlines()
    assert lines[0].split()[:2] == ["STA", "NET"]
    assert read_observer_list(tmp_path / "observer.lst") == {STA, STB}

    write_event_list(["EV2", "EV1", "EV2"], tmp_path / "event.lst")
    assert (tmp_path / "event.lst").read_text().split() == ["EV1", "EV2"]
    assert read_event_list(tmp_path / "event.lst") == {"EV1", "EV2"}


def test_data_entry_list(tmp_path):
    path = write_data_entry_list([window(), window(start=50.0), window(observer=STB, component=Component.T)],
                                 tmp_path / "dataEntry.lst")
    assert len(path.read_text().splitlines()) == 2
    assert read_data_entry_list(path) == {("EV1", STA, Component.Z), ("EV1", STB, Component.T)}


def test_event_catalog(tmp_path):
    p = tmp_path / "events.csv"
    p.write_text("event_id,latitude,longitude,depth,magnitude\n"
                 "201001010000A,10.5,-20.0,30.0,6.1\n"
                 "201001020000B,,,10.0,5.0\n")
    assert read_event_catalog(p) == {"201001010000A": (10.5, -20.0)}

    bad = tmp_path / "bad.csv"
    bad.write_text("id,lat,lon\nA,1,2\n")
    with pytest.raises(ValueError):
        read_event_catalog(bad)
