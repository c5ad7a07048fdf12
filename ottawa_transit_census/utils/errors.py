"""Exception types raised by the loaders and the metric deriver.

``DataUnavailable`` aborts a run. ``MalformedRecord`` and ``DivisionUndefined``
are raised by the scalar helpers and turned into nulls by the column-level
functions unless strict mode is requested.
"""

from __future__ import annotations


class DataUnavailable(OSError):
    """An input file or the census provider could not supply the requested data."""


class MalformedRecord(ValueError):
    """A single field could not be parsed as a number."""


class DivisionUndefined(ZeroDivisionError):
    """A derived ratio has a zero or missing denominator."""
