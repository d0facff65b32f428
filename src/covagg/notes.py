# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
notes

  Reader for the structural metadata (.gcno "notes") files written by gcc
  when compiling with --coverage. The notes describe, per function, the
  basic-block graph and the source lines associated with each block.

  Supported format versions are those written by gcc 4.7 up to gcc 11.
  See gcov-io.h in the gcc sources for a description of the format.

"""

from typing import List, Optional
from dataclasses import dataclass, field
import io
import struct

from .errors import MalformedNotes
from .types  import BlockLines

GCOV_NOTE_MAGIC = 0x67636e6f  # "gcno"
GCOV_DATA_MAGIC = 0x67636461  # "gcda"

GCOV_TAG_FUNCTION = 0x01000000
GCOV_TAG_BLOCKS   = 0x01410000
GCOV_TAG_ARCS     = 0x01430000
GCOV_TAG_LINES    = 0x01450000

GCOV_ARC_ON_TREE     = 1 << 0
GCOV_ARC_FAKE        = 1 << 1


def make_gcov_version(major: int, minor: int) -> int:
    return major << 16 | minor << 8


GCOV_VERSION_4_7_0  = make_gcov_version(4, 7)
GCOV_VERSION_8_0_0  = make_gcov_version(8, 0)
GCOV_VERSION_9_0_0  = make_gcov_version(9, 0)
GCOV_VERSION_12_0_0 = make_gcov_version(12, 0)


def map_gcov_version(version: int) -> int:
    """Map version number as found in .gcno/.gcda files to the format
    used in covagg (major << 16 | minor << 8)."""

    a = version >> 24
    b = version >> 16 & 0xFF
    c = version >>  8 & 0xFF

    ord_0 = ord("0")
    ord_A = ord("A")

    if a < ord_A:
        major = (a - ord_0)
        minor = (b - ord_0) * 10 + (c - ord_0)
    else:
        major = (a - ord_A) * 10 + (b - ord_0)
        minor = (c - ord_0)

    return make_gcov_version(major, minor)


def version_to_str(version: int) -> str:
    return "%d.%d" % (version >> 16, version >> 8 & 0xFF)


@dataclass
class Arc:
    src:   int
    dest:  int
    flags: int

    @property
    def on_tree(self) -> bool:
        return bool(self.flags & GCOV_ARC_ON_TREE)

    @property
    def fake(self) -> bool:
        return bool(self.flags & GCOV_ARC_FAKE)


@dataclass
class Function:
    ident:           int
    lineno_checksum: int
    cfg_checksum:    int
    name:            str
    source:          str
    start_line:      int
    artificial:      bool = False
    num_blocks:      Optional[int] = None
    arcs:            List[Arc]  = field(default_factory=list)
    block_lines:     BlockLines = field(default_factory=dict)

    def instrumented_arcs(self) -> List[Arc]:
        """Return the arcs which have a counter in the data file, in order."""
        return [arc for arc in self.arcs if not arc.on_tree]


@dataclass
class Notes:
    filename:  str
    version:   int
    stamp:     int
    cwd:       Optional[str] = None
    functions: List[Function] = field(default_factory=list)


class GcovReader:
    """Word oriented reader over a gcov notes or data blob."""

    def __init__(self, blob: bytes, filename: str, error=MalformedNotes):
        self.fhandle  = io.BytesIO(blob)
        self.length   = len(blob)
        self.filename = filename
        self.error    = error
        self.big_endian = False

    def fail(self, msg: str):
        raise self.error(f"{self.filename}: {msg}")

    def eof(self) -> bool:
        return self.fhandle.tell() >= self.length

    def tell(self) -> int:
        return self.fhandle.tell()

    def read(self, length: int, description: str) -> bytes:
        data = self.fhandle.read(length)
        if len(data) != length:
            self.fail(f"reached unexpected end of file reading {description}")
        return data

    def skip(self, length: int, description: str):
        if self.tell() + length > self.length:
            self.fail(f"reached unexpected end of file skipping {description}")
        self.fhandle.seek(length, io.SEEK_CUR)

    def read_magic(self, magic: int, kind: str):
        """Read file magic and determine file endianness."""
        word = self.read(4, "file magic")
        if struct.unpack(">I", word)[0] == magic:
            self.big_endian = True
        elif struct.unpack("<I", word)[0] == magic:
            self.big_endian = False
        else:
            self.fail(f"found unrecognized {kind} file magic")

    def read_value(self, description: str) -> int:
        word = self.read(4, description)
        return struct.unpack(">I" if self.big_endian else "<I", word)[0]

    def read_counter(self, description: str) -> int:
        low  = self.read_value(description)
        high = self.read_value(description)
        return high << 32 | low

    def read_string(self, description: str) -> str:
        length = self.read_value(f"{description} length")
        if length == 0:
            return ""
        data = self.read(length * 4, description)
        return data.rstrip(b"\0").decode("utf-8", errors="replace")


def read_gcno(blob: bytes, filename: str = "<notes>") -> Notes:
    """Read the contents of a .gcno blob and return its Notes.

    Raise MalformedNotes if the blob is corrupt or its block graph
    references are inconsistent.
    """
    reader = GcovReader(blob, filename, MalformedNotes)
    reader.read_magic(GCOV_NOTE_MAGIC, "gcno")

    version = map_gcov_version(reader.read_value("compiler version"))
    if not GCOV_VERSION_4_7_0 <= version < GCOV_VERSION_12_0_0:
        reader.fail(f"unsupported gcno format version {version_to_str(version)}")
    stamp = reader.read_value("file timestamp")
    notes = Notes(filename, version, stamp)
    if version >= GCOV_VERSION_9_0_0:
        notes.cwd = reader.read_string("current working directory") or None
    if version >= GCOV_VERSION_8_0_0:
        reader.skip(4, "support unexecuted blocks flag")

    function: Optional[Function] = None
    while not reader.eof():
        tag    = reader.read_value("record tag")
        length = reader.read_value("record length") * 4
        next_pos = reader.tell() + length
        # Catch garbage at the end of a gcno file
        if next_pos > reader.length:
            reader.fail("found overlong record")

        if tag == GCOV_TAG_FUNCTION:
            function = read_gcno_function_record(reader, version)
            notes.functions.append(function)
        elif tag == GCOV_TAG_BLOCKS:
            read_gcno_blocks_record(reader, function, version, length)
        elif tag == GCOV_TAG_ARCS:
            read_gcno_arcs_record(reader, function, length)
        elif tag == GCOV_TAG_LINES:
            read_gcno_lines_record(reader, function)

        # Ensure that we are at the start of the next record
        curr_pos = reader.tell()
        if curr_pos > next_pos:
            reader.fail("found unrecognized record format")
        reader.skip(next_pos - curr_pos, "unhandled record content")

    return notes


def read_gcno_function_record(reader: GcovReader, version: int) -> Function:
    """Read a gcno format function record."""
    ident           = reader.read_value("function ident")
    lineno_checksum = reader.read_value("function lineno checksum")
    cfg_checksum    = reader.read_value("function cfg checksum")
    name = reader.read_string("function name")
    artificial = False
    if version >= GCOV_VERSION_8_0_0:
        artificial = bool(reader.read_value("compiler-generated entity flag"))
    source     = reader.read_string("filename")
    start_line = reader.read_value("initial line number")
    # Column and ending line number (gcc 8+) are skipped with the
    # rest of the record
    return Function(ident, lineno_checksum, cfg_checksum, name, source,
                    start_line, artificial)


def read_gcno_blocks_record(reader: GcovReader, function: Optional[Function],
                            version: int, length: int):
    if function is None:
        reader.fail("found blocks record outside of a function")
    if function.num_blocks is not None:
        reader.fail(f"found duplicate blocks record in function {function.name}")
    if version >= GCOV_VERSION_8_0_0:
        function.num_blocks = reader.read_value("number of blocks")
    else:
        # One flags word per block
        function.num_blocks = length // 4
        reader.skip(length, "block flags")


def check_block(reader: GcovReader, function: Function, block: int, what: str):
    if function.num_blocks is None:
        reader.fail(f"found {what} before blocks record in function {function.name}")
    if block >= function.num_blocks:
        reader.fail(f"{what} references non-existent block {block} "
                    f"in function {function.name}")


def read_gcno_arcs_record(reader: GcovReader, function: Optional[Function],
                          length: int):
    if function is None:
        reader.fail("found arcs record outside of a function")
    if length < 4 or (length - 4) % 8:
        reader.fail(f"found malformed arcs record in function {function.name}")
    src = reader.read_value("arc source block")
    check_block(reader, function, src, "arc source")
    for _ in range((length - 4) // 8):
        dest  = reader.read_value("arc destination block")
        flags = reader.read_value("arc flags")
        check_block(reader, function, dest, "arc destination")
        function.arcs.append(Arc(src, dest, flags))


def read_gcno_lines_record(reader: GcovReader, function: Optional[Function]):
    """Read a gcno format lines record and add the relevant data
    to the block lines of function."""
    if function is None:
        reader.fail("found lines record outside of a function")
    block = reader.read_value("basic block index")
    check_block(reader, function, block, "lines record")
    lines = function.block_lines.setdefault(block, [])
    filename: Optional[str] = None
    while True:
        # Read line number
        lineno = reader.read_value("line number")
        if lineno == 0:
            # Got a marker for a new filename
            string = reader.read_string("filename")
            # Check for end of record
            if string == "":
                return
            filename = string
            continue
        # Got an actual line number
        if filename is None:
            reader.fail(f"found unassigned line number {lineno} "
                        f"in function {function.name}")
        lines.append((filename, lineno))
