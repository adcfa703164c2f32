# seiscompile/core/__init__.py

"""
Core types of seiscompile: observers, time windows, corrections, waveform
records, SAC access and signal representations.
"""
