# seiscompile/compile/compiler.py
from __future__ import annotations

import json
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from seiscompile.compile.loader import LoadedInputs, load_inputs
from seiscompile.compile.prober import probe_period_ranges
from seiscompile.config import CompileConfig
from seiscompile.core.records import WaveformKind, WaveformRecord
from seiscompile.core.sacio import SacTrace, event_folders, iter_obs_files, read_sac, syn_file_name
from seiscompile.core.spectral import (
    derive_representations, make_noise, spectral_amplitude, subtract_reference, window_rng,
)
from seiscompile.core.types import Component, Observer, TimeWindow
from seiscompile.errors import (
    DictionaryLookupError, FatalCompileError, SkipItem, TraceMismatchError, WindowOutOfRangeError,
)
from seiscompile.io.dataset import PERIOD_TOLERANCE, WaveformDataWriter
from seiscompile.io.listfiles import write_data_entry_list, write_event_list, write_observer_list

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------------------
# Overview
# --------------------------------------------------------------------------------------
# compile_dataset(config) pairs every observed trace obs/EVENT/STA_NET.EVENT.C with
# its synthetic syn/EVENT/STA_NET.EVENT.Cs[c], cuts each configured time window
# out of both and writes six representations to six index/payload file pairs:
#
#   actual    time-domain samples at final_sampling_hz
#   envelope  |analytic signal|
#   hy        Im(analytic signal)
#   spcAmp    log |F(f)| over [low_freq, high_freq)
#   spcRe     Re F(f)
#   spcIm     Im F(f)
#
# One task per event folder runs on a thread pool. Writers serialize their own
# appends; the pair counter has its own lock.
# --------------------------------------------------------------------------------------

REPRESENTATIONS = ("actual", "envelope", "hy", "spcAmp", "spcRe", "spcIm")
DELTA_RTOL = 1e-6


class PairCounter:
    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


@dataclass
class CompileResult:
    output_folder: Path
    n_pairs: int
    files: Dict[str, Tuple[Path, Path]] = field(default_factory=dict)   # name -> (index, payload)
    period_ranges: List[Tuple[float, float]] = field(default_factory=list)

    def index_path(self, name: str) -> Path:
        return self.files[name][0]

    def payload_path(self, name: str) -> Path:
        return self.files[name][1]


def output_folder_name(tag: Optional[str] = None, append_date: bool = False, now: Optional[datetime] = None) -> str:
    name = "compiled"
    if tag:
        name += f"_{tag}"
    if append_date:
        name += "_" + (now or datetime.now()).strftime("%Y%m%d%H%M%S")
    return name


def _window_label(window: TimeWindow) -> str:
    return f"{window.observer.id}.{window.event}.{window.component.name}.{window.start:.3f}"


class WaveformCompiler:
    """
    Compile observed/synthetic waveform pairs into binary datasets.

    Parameters
    ----------
    config : CompileConfig
    inputs : LoadedInputs, optional
        Windows and corrections; read from config.timewindow_path etc. if omitted.
    period_ranges : list of (min, max), optional
        Period dictionary; probed from the observed traces if omitted.
    """

    def __init__(self, config: CompileConfig, inputs: Optional[LoadedInputs] = None,
                 period_ranges: Optional[Sequence[Tuple[float, float]]] = None):
        self.config = config.validate()
        self.inputs = inputs
        self.period_ranges = None if period_ranges is None else [tuple(p) for p in period_ranges]
        self.counter = PairCounter()
        self.writers: Dict[str, WaveformDataWriter] = {}
        self._components = {Component.parse(c) for c in config.components}

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------
    def run(self) -> CompileResult:
        cfg = self.config
        if self.inputs is None:
            self.inputs = load_inputs(cfg)
        if self.period_ranges is None:
            self.period_ranges = probe_period_ranges(cfg.obs_path, cfg.period_probe_limit, self._components)

        out = Path(cfg.output_base) / output_folder_name(cfg.folder_tag, cfg.append_folder_date)
        out.mkdir(parents=True, exist_ok=True)
        logger.info(f"Output folder: {out}")

        observers = self.inputs.observers
        events = self.inputs.events
        phases = self.inputs.phases
        write_observer_list(observers, out / "observer.lst")
        write_event_list(events, out / "event.lst")
        write_data_entry_list(self.inputs.windows, out / "dataEntry.lst")
        with open(out / "compile_config.json", "w") as f:
            json.dump(cfg.to_dict(), f, indent=2)

        files = {name: (out / f"{name}ID.dat", out / f"{name}.dat") for name in REPRESENTATIONS}
        wanted = set(events)
        dirs = [d for d in event_folders(cfg.obs_path) if d.name in wanted]
        logger.info(f"Compiling {len(dirs)} events on {cfg.workers} threads")

        with ExitStack() as stack:
            for name, (index_path, payload_path) in files.items():
                self.writers[name] = stack.enter_context(WaveformDataWriter(
                    index_path, payload_path, observers, events, self.period_ranges, phases))
            self._run_pool(dirs)

        n = self.counter.value
        logger.info(f"{n} pairs of observed and synthetic waveforms are output in {out}")
        return CompileResult(out, n, files, list(self.period_ranges))

    def _run_pool(self, dirs: List[Path]) -> None:
        with ThreadPoolExecutor(max_workers=self.config.workers) as ex:
            futures = {ex.submit(self._process_event, d): d for d in dirs}
            try:
                for fut in tqdm(as_completed(futures), total=len(futures), desc="Events"):
                    fut.result()
            except BaseException:
                for f in futures:
                    f.cancel()
                raise

    # ------------------------------------------------------------------
    # Per event / per file
    # ------------------------------------------------------------------
    def _process_event(self, event_dir: Path) -> int:
        event = event_dir.name
        syn_dir = Path(self.config.syn_path) / event
        n = 0
        try:
            files = list(iter_obs_files(event_dir, self._components))
        except OSError as e:
            logger.warning(f"Cannot list {event_dir}: {e}")
            return 0
        for path, parsed in files:
            station, network, file_event, component, _ = parsed
            if file_event != event:
                logger.debug(f"{path.name} is not an observed trace of {event}")
                continue
            observer = Observer(station, network)
            windows = self.inputs.windows_for(observer, event, component)
            if not windows:
                continue
            try:
                n += self._process_file(path, syn_dir, observer, event, component, windows)
            except FatalCompileError:
                raise
            except SkipItem as e:
                logger.warning(f"Skipping {path.name}: {e}")
            except Exception:
                logger.exception(f"Error while processing {path}")
        return n

    def _read_pair(self, obs_file: Path, syn_file: Path) -> Tuple[SacTrace, SacTrace]:
        if not syn_file.is_file():
            raise SkipItem(f"{syn_file} does not exist")
        try:
            obs = read_sac(obs_file)
        except Exception as e:
            raise SkipItem(f"error occurred in reading {obs_file}: {e}") from e
        try:
            syn = read_sac(syn_file)
        except Exception as e:
            raise SkipItem(f"error occurred in reading {syn_file}: {e}") from e

        expected = 1.0 / self.config.sac_sampling_hz
        for tr in (obs, syn):
            if not math.isclose(tr.delta, expected, rel_tol=DELTA_RTOL):
                raise TraceMismatchError(f"DELTA of {tr.path.name} is {tr.delta}; expected {expected} "
                                         f"for sac_sampling_hz={self.config.sac_sampling_hz}")
        if obs.period_range != syn.period_range:
            raise TraceMismatchError(f"band pass filter difference: {obs.period_range} vs {syn.period_range}")
        return obs, syn

    def _process_file(self, obs_file: Path, syn_dir: Path, observer: Observer, event: str,
                      component: Component, windows: List[TimeWindow]) -> int:
        syn_file = syn_dir / syn_file_name(observer, event, component, self.config.convolved)
        obs, syn = self._read_pair(obs_file, syn_file)
        self._check_period_range(obs)
        n = 0
        for window in windows:
            try:
                built = self.build_records(window, obs, syn)
            except FatalCompileError:
                raise
            except SkipItem as e:
                logger.warning(f"Skipping window {window}: {e}")
                continue
            except Exception:
                logger.exception(f"Error while cutting window {window}")
                continue
            self._submit(built)
            n += 1
        return n

    def _check_period_range(self, obs: SacTrace) -> None:
        for lo, hi in self.period_ranges:
            if abs(lo - obs.min_period) < PERIOD_TOLERANCE and abs(hi - obs.max_period) < PERIOD_TOLERANCE:
                return
        limit = self.config.period_probe_limit
        probed = "every observed file" if limit is None else f"the first {limit} observed files"
        raise DictionaryLookupError(
            f"{obs.path.name} has pass band {obs.period_range}, which is not among the period ranges "
            f"{self.period_ranges} probed from {probed}. Increase period_probe_limit (or set it to null).")

    def _submit(self, built: Dict[str, Tuple[WaveformRecord, WaveformRecord]]) -> None:
        for name in REPRESENTATIONS:
            obs_rec, syn_rec = built[name]
            writer = self.writers[name]
            writer.append(obs_rec)
            writer.append(syn_rec)
        self.counter.increment()

    # ------------------------------------------------------------------
    # Per window
    # ------------------------------------------------------------------
    def corrections_for(self, window: TimeWindow) -> Tuple[float, float]:
        """(time shift, amplitude ratio) to apply to the observed cut of a window."""
        cfg, inputs = self.config, self.inputs
        shift, ratio = 0.0, 1.0
        if inputs.static is not None:
            sc = inputs.static.resolve(window)
            shift = sc.time_shift if cfg.correct_time else 0.0
            ratio = sc.amplitude_ratio if cfg.correct_amplitude else inputs.average_ratio(window.event)
        if inputs.mantle is not None:
            shift += inputs.mantle.resolve(window).time_shift
        return shift, ratio

    def _noise_for(self, window: TimeWindow, obs: SacTrace, start_time: float, npts: int, step: int):
        cfg = self.config
        i0 = obs.nearest_index(start_time)
        if i0 < 0 or i0 + npts * step > obs.npts:
            raise WindowOutOfRangeError(f"{window} starting at {start_time:.3f} is outside {obs.path.name}")
        # full-rate peak, shared by the time-domain and spectral paths
        peak = float(np.max(np.abs(obs.data[i0:i0 + npts * step])))
        rng = window_rng(cfg.noise_seed, _window_label(window))
        return make_noise(obs.npts, cfg.sac_sampling_hz, peak, cfg.noise_power, rng)

    def build_records(self, window: TimeWindow, obs: SacTrace,
                      syn: SacTrace) -> Dict[str, Tuple[WaveformRecord, WaveformRecord]]:
        """
        Observed and synthetic records of every representation for one window.

        Raises SkipItem subclasses when the window cannot be used. Nothing is
        written here.
        """
        cfg, inputs = self.config, self.inputs
        npts = int(round(window.length * cfg.final_sampling_hz))
        if npts < 1:
            raise WindowOutOfRangeError(f"{window} is shorter than one output sample")
        if window.end > syn.e - cfg.end_margin:
            raise WindowOutOfRangeError(f"{window} ends after {syn.path.name} end - {cfg.end_margin:g} s")

        shift, ratio = self.corrections_for(window)
        reference = inputs.reference_for(window)
        step = cfg.decimation_step
        obs_start = window.start - shift
        kw = dict(oversampling=cfg.freq_oversampling)

        noise = self._noise_for(window, obs, obs_start, npts, step) if cfg.add_noise else None
        o = derive_representations(obs, obs_start, npts, step, cfg.low_freq, cfg.high_freq, noise=noise, **kw)
        s = derive_representations(syn, window.start, npts, step, cfg.low_freq, cfg.high_freq, **kw)

        if not np.all(np.isfinite(o.time)) or not np.any(o.time):
            raise SkipItem(f"Observed waveform of {window} is zero or NaN")

        if reference is not None:
            nref = int(round(reference.length * cfg.final_sampling_hz))
            ref_f, ref_obs = spectral_amplitude(obs, reference.start, nref, step, cfg.low_freq, cfg.high_freq,
                                                noise=noise, **kw)
            _, ref_syn = spectral_amplitude(syn, reference.start, nref, step, cfg.low_freq, cfg.high_freq, **kw)
            obs_amp = subtract_reference(o.freqs, o.spc_amp, ref_f, ref_obs)
            syn_amp = subtract_reference(s.freqs, s.spc_amp, ref_f, ref_syn)
        else:
            obs_amp = o.spc_amp - math.log(inputs.average_ratio(window.event))
            syn_amp = s.spc_amp

        def pair(obs_data, syn_data) -> Tuple[WaveformRecord, WaveformRecord]:
            common = dict(
                observer=window.observer,
                event=window.event,
                component=window.component,
                min_period=obs.min_period,
                max_period=obs.max_period,
                sampling_hz=cfg.final_sampling_hz,
                convolved=cfg.convolved,
                phases=window.phases,
            )
            return (
                WaveformRecord(kind=WaveformKind.OBS, start_time=obs_start, npts=len(obs_data),
                               data=obs_data, **common),
                WaveformRecord(kind=WaveformKind.SYN, start_time=window.start, npts=len(syn_data),
                               data=syn_data, **common),
            )

        return {
            "actual": pair(o.time / ratio, s.time),
            "envelope": pair(o.envelope / ratio, s.envelope),
            "hy": pair(o.hy / ratio, s.hy),
            "spcAmp": pair(obs_amp, syn_amp),
            "spcRe": pair(o.spc_re, s.spc_re),
            "spcIm": pair(o.spc_im, s.spc_im),
        }


def compile_dataset(config: CompileConfig, **kwargs) -> CompileResult:
    """Run one compilation; see WaveformCompiler."""
    return WaveformCompiler(config, **kwargs).run()
