# seiscompile/errors.py
"""
Exceptions raised by the compile pipeline.

Two families:
  * FatalCompileError - the run cannot continue (bad configuration, ambiguous
    corrections, records outside the writer dictionaries, ...).
  * SkipItem - one file or window is unusable; the worker logs it and moves on.
"""


class CompileError(Exception):
    """Base class for every error raised by seiscompile."""


class FatalCompileError(CompileError):
    """Aborts the whole run."""


class ConfigError(FatalCompileError, ValueError):
    """Invalid configuration value or missing required input path."""


class AmbiguousCorrectionError(FatalCompileError):
    """More than one correction record matches a single time window."""


class DictionaryLookupError(FatalCompileError, KeyError):
    """A record references an observer/event/period/phase/position the writer does not know."""

    def __str__(self):
        # KeyError quotes its argument; keep the message readable
        return str(self.args[0]) if self.args else ""


class WriterModeError(FatalCompileError):
    """Wrong record kind for a mode-locked writer, or append after close."""


class DatasetFormatError(FatalCompileError):
    """A binary input file is truncated or malformed."""


class SkipItem(CompileError):
    """Recoverable: skip the current file or window."""


class MissingCorrectionError(SkipItem):
    """No correction record matches a window that needs one."""


class TraceMismatchError(SkipItem):
    """Observed and synthetic traces disagree on sampling interval or pass band."""


class WindowOutOfRangeError(SkipItem):
    """The window (or its cut) falls outside the available trace."""


class MissingReferenceWindowError(SkipItem):
    """No unique reference window exists for a window that needs normalization."""
