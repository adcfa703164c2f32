# seiscompile/__init__.py

"""
seiscompile: compile observed and synthetic seismic waveforms into paired
binary datasets (time domain, envelope, quadrature and spectra) for waveform
inversion.
"""

__version__ = "0.1.0"
