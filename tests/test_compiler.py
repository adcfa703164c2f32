from __future__ import annotations

import json
import math

import numpy as np
import pytest
from conftest import BAND, STA, STB, correction, window

from seiscompile.compile.compiler import REPRESENTATIONS, compile_dataset, output_folder_name
from seiscompile.core.records import WaveformKind, is_pair
from seiscompile.core.sacio import read_sac
from seiscompile.core.spectral import spectral_amplitude
from seiscompile.core.types import Component
from seiscompile.errors import AmbiguousCorrectionError, ConfigError, DictionaryLookupError
from seiscompile.io.dataset import read_dataset
from seiscompile.io.listfiles import read_event_list, read_observer_list


def records(result, name):
    return read_dataset(result.index_path(name), result.payload_path(name))[1]


def by_kind(recs):
    obs = [r for r in recs if r.kind is WaveformKind.OBS]
    syn = [r for r in recs if r.kind is WaveformKind.SYN]
    return obs, syn


def test_scenario_single_pair(layout):
    layout.add_pair("EV1")
    layout.windows(window(start=10.0, end=40.0))
    result = compile_dataset(layout.config())

    assert result.n_pairs == 1
    assert result.output_folder.name == "compiled"
    assert result.period_ranges == [BAND]
    for name in REPRESENTATIONS:
        recs = records(result, name)
        assert len(recs) == 2
        obs, syn = by_kind(recs)
        assert len(obs) == len(syn) == 1
        assert is_pair(obs[0], syn[0])
        assert obs[0].phases == ("S",)
        assert obs[0].convolved
    obs, syn = by_kind(records(result, "actual"))
    assert obs[0].npts == syn[0].npts == 30
    assert obs[0].start_time == syn[0].start_time == 10.0
    assert obs[0].sampling_hz == 1.0

    trace = read_sac(layout.obs / "EV1" / "STA_NET.EV1.Z")
    np.testing.assert_array_equal(obs[0].data, trace.data[200:800:20])

    assert read_observer_list(result.output_folder / "observer.lst") == {STA}
    assert read_event_list(result.output_folder / "event.lst") == {"EV1"}
    saved = json.loads((result.output_folder / "compile_config.json").read_text())
    assert saved["final_sampling_hz"] == 1.0


def test_ambiguous_correction_aborts(layout):
    layout.add_pair("EV1")
    layout.windows(window())
    layout.corrections(correction(shift=1.0), correction(shift=2.0))
    with pytest.raises(AmbiguousCorrectionError):
        compile_dataset(layout.config(static_correction_path=layout.static, correct_time=True))


@pytest.mark.parametrize("kw", [dict(high_freq=15.0), dict(add_noise=True, noise_seed=-1)])
def test_bad_settings_abort_before_compiling(layout, kw):
    layout.add_pair("EV1")
    layout.windows(window())
    with pytest.raises(ConfigError):
        compile_dataset(layout.config(**kw))
    assert not (layout.root / "out").exists()


def test_noise_changes_observed_only(layout):
    layout.add_pair("EV1")
    layout.windows(window())
    clean = compile_dataset(layout.config(output_base=layout.root / "clean"))
    noisy = compile_dataset(layout.config(output_base=layout.root / "noisy", add_noise=True,
                                          noise_power=0.5, noise_seed=11))
    for name in REPRESENTATIONS:
        c_obs, c_syn = by_kind(records(clean, name))
        n_obs, n_syn = by_kind(records(noisy, name))
        assert c_syn[0].data.tobytes() == n_syn[0].data.tobytes()
        if name in ("actual", "spcAmp"):
            assert not np.array_equal(c_obs[0].data, n_obs[0].data)
        else:
            np.testing.assert_array_equal(c_obs[0].data, n_obs[0].data)


def test_event_average_ratio_without_reference(layout):
    layout.add_pair("EV1")
    layout.add_pair("EV1", STB, seed=5)
    layout.windows(window(), window(observer=STB))
    layout.corrections(correction(ratio=2.0), correction(observer=STB, ratio=4.0))
    result = compile_dataset(layout.config(static_correction_path=layout.static, correct_time=True))
    assert result.n_pairs == 2

    trace = read_sac(layout.obs / "EV1" / "STA_NET.EV1.Z")
    _, raw = spectral_amplitude(trace, 10.0, 30, 20, 0.01, 0.08)
    obs = [r for r in records(result, "spcAmp") if r.kind is WaveformKind.OBS and r.observer == STA][0]
    np.testing.assert_allclose(obs.data, raw - math.log(3.0))

    syn_trace = read_sac(layout.syn / "EV1" / "STA_NET.EV1.Zsc")
    _, syn_raw = spectral_amplitude(syn_trace, 10.0, 30, 20, 0.01, 0.08)
    syn = [r for r in records(result, "spcAmp") if r.kind is WaveformKind.SYN and r.observer == STA][0]
    np.testing.assert_allclose(syn.data, syn_raw)

    actual = [r for r in records(result, "actual") if r.kind is WaveformKind.OBS and r.observer == STA][0]
    np.testing.assert_allclose(actual.data, trace.data[200:800:20] / 3.0)


def test_reference_window_normalizes_both(layout):
    from seiscompile.io.windowfile import write_timewindows

    layout.add_pair("EV1")
    layout.windows(window(start=10.0, end=40.0))
    write_timewindows([window(start=40.0, end=80.0, phases=("P",))], layout.reference)
    result = compile_dataset(layout.config(timewindow_ref_path=layout.reference))
    assert result.n_pairs == 1
    obs, syn = by_kind(records(result, "spcAmp"))
    plain = compile_dataset(layout.config(output_base=layout.root / "plain"))
    p_obs, p_syn = by_kind(records(plain, "spcAmp"))
    assert not np.allclose(obs[0].data, p_obs[0].data)
    assert not np.allclose(syn[0].data, p_syn[0].data)


def test_missing_reference_window_skips(layout):
    from seiscompile.io.windowfile import write_timewindows

    layout.add_pair("EV1")
    layout.windows(window())
    write_timewindows([window(observer=STB, start=40.0, end=80.0)], layout.reference)
    assert compile_dataset(layout.config(timewindow_ref_path=layout.reference)).n_pairs == 0


def test_time_and_mantle_shift(layout):
    layout.add_pair("EV1")
    layout.windows(window(start=20.0, end=50.0))
    layout.corrections(correction(syn_start=20.0, shift=2.0, ratio=1.0))
    layout.corrections(correction(syn_start=20.0, shift=1.5), path=layout.mantle)
    result = compile_dataset(layout.config(static_correction_path=layout.static, correct_time=True,
                                           mantle_correction_path=layout.mantle, correct_mantle=True))
    obs, syn = by_kind(records(result, "actual"))
    assert obs[0].start_time == pytest.approx(16.5)
    assert syn[0].start_time == 20.0
    trace = read_sac(layout.obs / "EV1" / "STA_NET.EV1.Z")
    np.testing.assert_array_equal(obs[0].data, trace.data[330:930:20])


def test_amplitude_correction_uses_window_ratio(layout):
    layout.add_pair("EV1")
    layout.windows(window())
    layout.corrections(correction(ratio=4.0))
    result = compile_dataset(layout.config(static_correction_path=layout.static, correct_amplitude=True))
    obs, _ = by_kind(records(result, "envelope"))
    plain = compile_dataset(layout.config(output_base=layout.root / "plain"))
    p_obs, _ = by_kind(records(plain, "envelope"))
    np.testing.assert_allclose(obs[0].data, p_obs[0].data / 4.0)


def test_window_near_trace_end_is_not_emitted(layout):
    layout.add_pair("EV1")
    # synthetic ends at 99.95 s; the margin is 10 s
    layout.windows(window(start=10.0, end=40.0), window(start=60.0, end=95.0), window(start=60.0, end=89.0))
    result = compile_dataset(layout.config())
    assert result.n_pairs == 2
    _, syn = by_kind(records(result, "actual"))
    assert sorted(r.start_time + r.npts for r in syn) == [40.0, 89.0]


def test_missing_correction_skips_window(layout):
    layout.add_pair("EV1")
    layout.add_pair("EV1", STB, seed=5)
    layout.windows(window(), window(observer=STB))
    layout.corrections(correction())
    result = compile_dataset(layout.config(static_correction_path=layout.static, correct_time=True))
    assert result.n_pairs == 1


def test_unusable_files_are_skipped(layout, caplog):
    layout.add_pair("EV1")                                     # good
    layout.add_pair("EV1", STB, with_syn=False)                # no synthetic
    layout.add_pair("EV1", STA, Component.T, syn_band=(10.0, 200.0))   # band mismatch
    layout.add_pair("EV1", STB, Component.T, syn_delta=0.1)    # wrong DELTA
    layout.windows(window(), window(observer=STB), window(component=Component.T),
                   window(observer=STB, component=Component.T))
    result = compile_dataset(layout.config())
    assert result.n_pairs == 1
    assert "does not exist" in caplog.text
    assert "band pass" in caplog.text


def test_unconvolved_synthetics(layout):
    layout.add_pair("EV1", convolved=False)
    layout.windows(window())
    assert compile_dataset(layout.config()).n_pairs == 0
    result = compile_dataset(layout.config(convolved=False, output_base=layout.root / "raw"))
    assert result.n_pairs == 1
    obs, _ = by_kind(records(result, "hy"))
    assert not obs[0].convolved


def test_unprobed_band_is_fatal(layout):
    layout.add_pair("EV1", obs_band=(5.0, 100.0), syn_band=(5.0, 100.0))
    layout.add_pair("EV2", obs_band=(10.0, 200.0), syn_band=(10.0, 200.0))
    layout.windows(window(), window(event="EV2"))
    with pytest.raises(DictionaryLookupError, match="period_probe_limit"):
        compile_dataset(layout.config(period_probe_limit=1))
    assert compile_dataset(layout.config(period_probe_limit=None)).n_pairs == 2


def test_rerun_gives_identical_records(layout):
    for ev in ("EV1", "EV2"):
        layout.add_pair(ev)
        layout.add_pair(ev, STB, Component.R, seed=9)
    layout.windows(window(), window(event="EV2"), window(observer=STB, component=Component.R),
                   window(event="EV2", observer=STB, component=Component.R, start=50.0, end=70.0))
    a = compile_dataset(layout.config(output_base=layout.root / "a", n_workers=4))
    b = compile_dataset(layout.config(output_base=layout.root / "b", n_workers=4))
    assert a.n_pairs == b.n_pairs == 4

    def key(r):
        return (r.event, r.observer.id, r.component.value, r.kind.value)

    for name in REPRESENTATIONS:
        ra = sorted(records(a, name), key=key)
        rb = sorted(records(b, name), key=key)
        assert [key(r) for r in ra] == [key(r) for r in rb]
        for x, y in zip(ra, rb):
            assert x == y
            assert x.data.tobytes() == y.data.tobytes()


def test_output_folder_name():
    from datetime import datetime

    assert output_folder_name() == "compiled"
    assert output_folder_name("run1") == "compiled_run1"
    now = datetime(2024, 5, 6, 7, 8, 9)
    assert output_folder_name("x", True, now) == "compiled_x_20240506070809"
