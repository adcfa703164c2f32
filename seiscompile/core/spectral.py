# seiscompile/core/spectral.py
from __future__ import annotations

import zlib
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from obspy.signal.filter import bandpass

from seiscompile.core.sacio import SacTrace
from seiscompile.errors import WindowOutOfRangeError

# Pass band of the synthetic-test noise (Hz)
NOISE_FREQMIN = 0.005
NOISE_FREQMAX = 0.125
NOISE_CORNERS = 4


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------

def next_pow2(n: int) -> int:
    return 1 if n <= 1 else int(2 ** np.ceil(np.log2(n)))


def _check_range(trace: SacTrace, start_index: int, length: int) -> None:
    if start_index < 0 or start_index + length > trace.npts:
        raise WindowOutOfRangeError(
            f"cut [{start_index}, {start_index + length}) outside {trace.path.name} (npts={trace.npts})")


def decimate_from(y: np.ndarray, start_index: int, npts: int, step: int) -> np.ndarray:
    """npts samples of y taken every `step` samples from start_index."""
    return np.asarray(y[start_index:start_index + npts * step:step], dtype=np.float64)


# ---------------------------------------------------------------------------
# Spectra
# ---------------------------------------------------------------------------

def band_spectrum(
    segment: np.ndarray,
    delta: float,
    low_freq: float,
    high_freq: float,
    *,
    oversampling: int = 8,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fourier coefficients of `segment` restricted to [low_freq, high_freq).

    The segment is zero-padded to next_pow2(len) * oversampling points and
    transformed with an rFFT scaled by delta. Returns (freqs, complex coeffs).
    """
    nfft = next_pow2(segment.size) * int(oversampling)
    spec = np.fft.rfft(segment, n=nfft) * delta
    df = 1.0 / (nfft * delta)
    i0 = max(int(low_freq / df) - 1, 0)
    n = int((high_freq - low_freq) / df)
    if n < 1:
        raise ValueError(f"Band [{low_freq}, {high_freq}) is narrower than df={df:g} Hz")
    if i0 + n > spec.size:
        raise ValueError(f"Band [{low_freq}, {high_freq}) exceeds the Nyquist frequency")
    idx = np.arange(i0, i0 + n)
    return idx * df, spec[idx]


def log_amplitude(coeffs: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore"):
        return np.log(np.abs(coeffs))


def interpolate_linear(x: np.ndarray, xp: np.ndarray, fp: np.ndarray) -> np.ndarray:
    """
    Linear interpolation between the two samples of (xp, fp) bracketing each x,
    extrapolating from the two outermost samples beyond the ends (np.interp
    would clamp instead).
    """
    xp = np.asarray(xp, dtype=np.float64)
    fp = np.asarray(fp, dtype=np.float64)
    if xp.size < 2:
        raise ValueError("Need at least two reference points to interpolate")
    j = np.clip(np.searchsorted(xp, x) - 1, 0, xp.size - 2)
    x0, x1 = xp[j], xp[j + 1]
    y0, y1 = fp[j], fp[j + 1]
    return y0 + (y1 - y0) * (np.asarray(x) - x0) / (x1 - x0)


def subtract_reference(freqs: np.ndarray, log_amp: np.ndarray,
                       ref_freqs: np.ndarray, ref_log_amp: np.ndarray) -> np.ndarray:
    """Normalize a log spectral amplitude by a reference curve (log-space subtraction)."""
    return log_amp - interpolate_linear(freqs, ref_freqs, ref_log_amp)


# ---------------------------------------------------------------------------
# Noise for synthetic tests
# ---------------------------------------------------------------------------

def window_rng(seed: Optional[int], label: str) -> np.random.Generator:
    """
    Generator for one window. With a seed, the stream depends only on
    (seed, label) so results do not depend on thread scheduling.
    """
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng([int(seed), zlib.crc32(label.encode())])


def make_noise(npts: int, sampling_hz: float, peak: float, power: float,
               rng: np.random.Generator) -> np.ndarray:
    """Band-limited Gaussian noise whose peak amplitude is power * peak."""
    u = rng.standard_normal(npts)
    u = bandpass(u, NOISE_FREQMIN, NOISE_FREQMAX, df=sampling_hz, corners=NOISE_CORNERS, zerophase=False)
    umax = np.max(np.abs(u))
    if umax == 0 or not np.isfinite(umax):
        return np.zeros(npts)
    return u * (power * peak / umax)


# ---------------------------------------------------------------------------
# Cutting: one function for all representations
# ---------------------------------------------------------------------------

@dataclass
class Representations:
    time: np.ndarray
    envelope: np.ndarray
    hy: np.ndarray
    freqs: np.ndarray
    spc_amp: np.ndarray
    spc_re: np.ndarray
    spc_im: np.ndarray


def spectral_amplitude(
    trace: SacTrace,
    start_time: float,
    npts: int,
    step: int,
    low_freq: float,
    high_freq: float,
    *,
    oversampling: int = 8,
    noise: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """(freqs, log amplitude) of the full-rate segment spanning npts output samples."""
    i0 = trace.nearest_index(start_time)
    _check_range(trace, i0, npts * step)
    y = trace.data if noise is None else trace.data + noise
    freqs, coeffs = band_spectrum(y[i0:i0 + npts * step], trace.delta, low_freq, high_freq,
                                  oversampling=oversampling)
    return freqs, log_amplitude(coeffs)


def derive_representations(
    trace: SacTrace,
    start_time: float,
    npts: int,
    step: int,
    low_freq: float,
    high_freq: float,
    *,
    oversampling: int = 8,
    noise: Optional[np.ndarray] = None,
) -> Representations:
    """
    Cut one window out of a trace in every representation.

    `noise` (same length as the trace) is added before cutting the time-domain
    samples and the spectral amplitude; envelope, quadrature and the complex
    spectrum are always taken from the clean trace.
    """
    i0 = trace.nearest_index(start_time)
    _check_range(trace, i0, npts * step)

    noisy = trace.data if noise is None else trace.data + noise
    analytic = trace.analytic

    time = decimate_from(noisy, i0, npts, step)
    envelope = decimate_from(np.abs(analytic), i0, npts, step)
    hy = decimate_from(np.imag(analytic), i0, npts, step)

    segment = slice(i0, i0 + npts * step)
    freqs, clean_coeffs = band_spectrum(trace.data[segment], trace.delta, low_freq, high_freq,
                                        oversampling=oversampling)
    if noise is None:
        spc_amp = log_amplitude(clean_coeffs)
    else:
        _, noisy_coeffs = band_spectrum(noisy[segment], trace.delta, low_freq, high_freq,
                                        oversampling=oversampling)
        spc_amp = log_amplitude(noisy_coeffs)

    return Representations(
        time=time,
        envelope=envelope,
        hy=hy,
        freqs=freqs,
        spc_amp=spc_amp,
        spc_re=np.real(clean_coeffs).astype(np.float64),
        spc_im=np.imag(clean_coeffs).astype(np.float64),
    )
