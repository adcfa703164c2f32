# seiscompile/compile/__init__.py

"""
The compile pipeline: window/correction loading, period-range probing and the
per-event worker engine.
"""
