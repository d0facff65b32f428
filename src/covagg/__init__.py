# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

__version__ = "1.0.0"

from .errors    import *  # noqa
from .model     import CoverageModel, SourceFile, Tracefile, SkippedUnit, LineState
from .notes     import read_gcno
from .data      import read_gcda
from .geninfo   import build_model, capture, initial_capture
from .aggregate import merge, merge_tracefiles, extract, remove
from .tracefile import load, save
from .genreport import generate_report, DirectorySink, StreamSink
