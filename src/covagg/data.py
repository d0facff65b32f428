# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
data

  Reader for the runtime counter (.gcda "data") files written by programs
  instrumented with gcc --coverage when they exit, and the check that a
  data file belongs to the notes file it is paired with.

"""

from typing import List, Dict, Optional
from dataclasses import dataclass, field

from .errors import MalformedData, VersionMismatch
from .notes  import Notes, GcovReader, GCOV_DATA_MAGIC, GCOV_TAG_FUNCTION
from .notes  import map_gcov_version, version_to_str

GCOV_TAG_COUNTER_ARCS    = 0x01a10000
GCOV_TAG_OBJECT_SUMMARY  = 0xa1000000
GCOV_TAG_PROGRAM_SUMMARY = 0xa3000000


@dataclass
class DataFunction:
    ident:           int
    lineno_checksum: int
    cfg_checksum:    int
    counters:        List[int] = field(default_factory=list)


@dataclass
class Data:
    filename:  str
    version:   int
    stamp:     int
    functions: Dict[int, DataFunction] = field(default_factory=dict)


def read_gcda(blob: bytes, filename: str = "<data>",
              notes: Optional[Notes] = None) -> Data:
    """Read the contents of a .gcda blob and return its Data.

    Raise MalformedData on structural corruption. If NOTES is given,
    also verify that the blob belongs to them (see check_pair()).
    """
    reader = GcovReader(blob, filename, MalformedData)
    reader.read_magic(GCOV_DATA_MAGIC, "gcda")
    version = map_gcov_version(reader.read_value("compiler version"))
    stamp   = reader.read_value("file timestamp")
    data = Data(filename, version, stamp)

    function: Optional[DataFunction] = None
    while not reader.eof():
        tag    = reader.read_value("record tag")
        length = reader.read_value("record length") * 4
        next_pos = reader.tell() + length
        if next_pos > reader.length:
            reader.fail("found overlong record")

        if tag == GCOV_TAG_FUNCTION:
            if length == 0:
                # Function not present in this object
                function = None
            else:
                ident           = reader.read_value("function ident")
                lineno_checksum = reader.read_value("function lineno checksum")
                cfg_checksum    = reader.read_value("function cfg checksum")
                if ident in data.functions:
                    reader.fail(f"found duplicate function ident {ident}")
                function = DataFunction(ident, lineno_checksum, cfg_checksum)
                data.functions[ident] = function
        elif tag == GCOV_TAG_COUNTER_ARCS:
            if function is None:
                reader.fail("found arc counters outside of a function")
            if length % 8:
                reader.fail(f"found malformed arc counters of function {function.ident}")
            function.counters.extend(reader.read_counter("arc counter")
                                     for _ in range(length // 8))
        # Summaries and other counter kinds are skipped

        curr_pos = reader.tell()
        if curr_pos > next_pos:
            reader.fail("found unrecognized record format")
        reader.skip(next_pos - curr_pos, "unhandled record content")

    if notes is not None:
        check_pair(notes, data)

    return data


def check_pair(notes: Notes, data: Data):
    """Verify that DATA holds the counters of NOTES.

    Raise VersionMismatch if the format versions or timestamps differ, or
    if any function in DATA has no matching function in NOTES.
    """
    if notes.version != data.version:
        raise VersionMismatch(f"{data.filename}: version {version_to_str(data.version)} "
                              f"does not match notes version {version_to_str(notes.version)}")
    if notes.stamp != data.stamp:
        raise VersionMismatch(f"{data.filename}: stamp 0x{data.stamp:08x} does not "
                              f"match notes stamp 0x{notes.stamp:08x}")

    graph_functions = {function.ident: function for function in notes.functions}
    for ident, dfunction in data.functions.items():
        function = graph_functions.get(ident)
        if function is None:
            raise VersionMismatch(f"{data.filename}: function ident {ident} "
                                  f"not found in notes")
        if (function.lineno_checksum != dfunction.lineno_checksum or
            function.cfg_checksum    != dfunction.cfg_checksum):
            raise VersionMismatch(f"{data.filename}: checksum mismatch "
                                  f"for function {function.name}")
        num_arcs = len(function.instrumented_arcs())
        if len(dfunction.counters) != num_arcs:
            raise VersionMismatch(f"{data.filename}: function {function.name} has "
                                  f"{len(dfunction.counters)} counters, notes "
                                  f"expect {num_arcs}")
