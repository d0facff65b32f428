# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
errors

  Error taxonomy. Failures of a single translation unit (malformed notes or
  data, mismatched pairs, missing pairs) are isolated by the capture and
  reported as skipped units. IncompatibleRecord is fatal to the merge that
  raised it. MalformedTracefile is fatal to the command reading the
  tracefile.

"""

__all__ = ('CoverageError', 'MalformedNotes', 'MalformedData',
           'VersionMismatch', 'IncompatibleRecord', 'MissingPair',
           'MalformedTracefile')


class CoverageError(Exception):
    """Base class of all covagg errors."""


class MalformedNotes(CoverageError):
    """Notes (.gcno) blob is corrupt or its block graph is inconsistent."""


class MalformedData(CoverageError):
    """Data (.gcda) blob is corrupt or its counters cannot be solved."""


class VersionMismatch(CoverageError):
    """Data blob does not belong to the notes blob it is paired with."""


class IncompatibleRecord(CoverageError):
    """Two models disagree about the record at the same coordinate."""


class MissingPair(CoverageError):
    """Data blob without notes blob, or notes blob without data blob."""


class MalformedTracefile(CoverageError):
    """Tracefile cannot be decoded or does not hold a coverage model."""
