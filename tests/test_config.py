from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import window

from seiscompile.config import CompileConfig, load_config, write_default_config
from seiscompile.errors import ConfigError


def test_defaults(layout):
    layout.windows(window())
    cfg = layout.config()
    assert cfg.components == ("Z", "R", "T")
    assert cfg.decimation_step == 20
    assert cfg.correction_match == "record"
    assert not cfg.uses_static_correction
    assert cfg.validate() is cfg


@pytest.mark.parametrize("kw", [
    dict(final_sampling_hz=3.0),
    dict(low_freq=0.1, high_freq=0.05),
    dict(high_freq=30.0),
    dict(high_freq=15.0),                   # above Nyquist of 20 Hz SAC
    dict(add_noise=True, noise_seed=-1),
    dict(components=("Z", "X")),
    dict(correction_match="nearest"),
    dict(min_distance=-1.0),
    dict(period_probe_limit=0),
    dict(correct_time=True),                # no static correction file
    dict(correct_mantle=True),              # no mantle correction file
    dict(min_distance=30.0),                # no event catalog
    dict(timewindow_ref_path="missing.dat"),
])
def test_invalid_settings(layout, kw):
    layout.windows(window())
    with pytest.raises(ConfigError):
        layout.config(**kw).validate()


def test_missing_required_paths(tmp_path):
    with pytest.raises(ConfigError):
        CompileConfig(obs_path=tmp_path / "nope", syn_path=tmp_path, timewindow_path=tmp_path / "tw.dat").validate()
    with pytest.raises(ConfigError):
        CompileConfig(obs_path=tmp_path, syn_path=tmp_path, timewindow_path=tmp_path / "tw.dat").validate()


def test_config_errors_are_value_errors():
    assert issubclass(ConfigError, ValueError)


def test_components_from_string(tmp_path):
    cfg = CompileConfig(obs_path=tmp_path, syn_path=tmp_path, timewindow_path=tmp_path, components="z t")
    assert cfg.components == ("Z", "T")


def test_load_yaml_resolves_relative_paths(tmp_path):
    (tmp_path / "obs").mkdir()
    p = tmp_path / "compile.yml"
    p.write_text("obs_path: obs\nsyn_path: /data/syn\ntimewindow_path: tw.dat\n"
                 "components: [T]\nfinal_sampling_hz: 2\ncorrect_time: true\n")
    cfg = load_config(p)
    assert cfg.obs_path == tmp_path / "obs"
    assert cfg.syn_path == Path("/data/syn")
    assert cfg.timewindow_path == tmp_path / "tw.dat"
    assert cfg.components == ("T",)
    assert cfg.final_sampling_hz == 2
    assert cfg.correct_time


def test_json_round_trip(tmp_path, layout):
    cfg = layout.config(folder_tag="t1", noise_seed=3)
    p = tmp_path / "cfg.json"
    p.write_text(json.dumps(cfg.to_dict()))
    assert load_config(p) == cfg


def test_unknown_keys_rejected(tmp_path):
    p = tmp_path / "cfg.json"
    p.write_text(json.dumps({"obs_path": ".", "syn_path": ".", "timewindow_path": "x", "sampling": 3}))
    with pytest.raises(ConfigError, match="sampling"):
        load_config(p)


def test_write_default_config(tmp_path):
    p = write_default_config(tmp_path / "compile.yml")
    cfg = load_config(p)
    assert cfg.timewindow_path == tmp_path / "timewindow.dat"
    assert cfg.sac_sampling_hz == 20.0
    with pytest.raises(FileExistsError):
        write_default_config(p)
