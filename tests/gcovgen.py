# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
Builders of small .gcno/.gcda blobs for the tests.
"""

from typing import List, Tuple, Optional
import struct

from covagg.notes import GCOV_NOTE_MAGIC, GCOV_DATA_MAGIC
from covagg.notes import GCOV_TAG_FUNCTION, GCOV_TAG_BLOCKS, GCOV_TAG_ARCS, GCOV_TAG_LINES
from covagg.notes import GCOV_ARC_ON_TREE, GCOV_ARC_FAKE
from covagg.data  import GCOV_TAG_COUNTER_ARCS

VERSION_9_3 = 0x4139332a  # "A93*"
VERSION_4_7 = 0x3430372a  # "407*"
VERSION_12_1 = 0x4232312a  # "B21*"

STAMP = 0x12345678


class Writer:

    def __init__(self, big_endian: bool = False):
        self.fmt   = ">I" if big_endian else "<I"
        self.words: List[bytes] = []

    def word(self, value: int) -> "Writer":
        self.words.append(struct.pack(self.fmt, value))
        return self

    def string(self, value: str) -> "Writer":
        data = value.encode("utf-8")
        length = (len(data) + 4) // 4
        self.word(length)
        data = data.ljust(length * 4, b"\0")
        for idx in range(0, len(data), 4):
            self.words.append(data[idx:idx + 4])
        return self

    def counter(self, value: int) -> "Writer":
        return self.word(value & 0xFFFFFFFF).word(value >> 32)

    def record(self, tag: int, payload: "Writer") -> "Writer":
        self.word(tag).word(len(payload.words))
        self.words.extend(payload.words)
        return self

    def sub(self) -> "Writer":
        return Writer(self.fmt == ">I")

    def blob(self) -> bytes:
        return b"".join(self.words)


# arcs: (src, dest, flags)
SAMPLE_ARCS = [(0, 2, 0), (2, 3, 0), (2, 4, 0), (3, 4, 0), (4, 1, 0)]
SAMPLE_LINES = {2: [3, 4], 3: [5], 4: [7]}


class FunctionSpec:

    def __init__(self, ident: int = 1, name: str = "main", source: str = "main.c",
                 start_line: int = 2, num_blocks: int = 5,
                 arcs: Optional[List[Tuple[int, int, int]]] = None,
                 lines: Optional[dict] = None,
                 lineno_checksum: int = 0xaaaa, cfg_checksum: int = 0xbbbb,
                 artificial: bool = False):
        self.ident = ident
        self.name  = name
        self.source = source
        self.start_line = start_line
        self.num_blocks = num_blocks
        self.arcs  = SAMPLE_ARCS if arcs is None else arcs
        self.lines = SAMPLE_LINES if lines is None else lines
        self.lineno_checksum = lineno_checksum
        self.cfg_checksum = cfg_checksum
        self.artificial = artificial

    def num_counters(self) -> int:
        return sum(1 for arc in self.arcs if not arc[2] & GCOV_ARC_ON_TREE)


def make_gcno(functions: List[FunctionSpec], *, version: int = VERSION_9_3,
              stamp: int = STAMP, cwd: str = "/work",
              big_endian: bool = False) -> bytes:
    modern = version >= 0x38000000  # gcc 8 and later
    writer = Writer(big_endian)
    writer.word(GCOV_NOTE_MAGIC).word(version).word(stamp)
    if version >= 0x39000000:
        writer.string(cwd)
    if modern:
        writer.word(0)

    for function in functions:
        payload = writer.sub()
        payload.word(function.ident).word(function.lineno_checksum).word(function.cfg_checksum)
        payload.string(function.name)
        if modern:
            payload.word(int(function.artificial))
        payload.string(function.source).word(function.start_line)
        if modern:
            payload.word(1).word(function.start_line + 10)
        writer.record(GCOV_TAG_FUNCTION, payload)

        payload = writer.sub()
        if modern:
            payload.word(function.num_blocks)
        else:
            for _ in range(function.num_blocks):
                payload.word(0)
        writer.record(GCOV_TAG_BLOCKS, payload)

        sources = sorted({arc[0] for arc in function.arcs})
        for src in sources:
            payload = writer.sub().word(src)
            for arc in function.arcs:
                if arc[0] == src:
                    payload.word(arc[1]).word(arc[2])
            writer.record(GCOV_TAG_ARCS, payload)

        for block in sorted(function.lines):
            payload = writer.sub().word(block)
            payload.word(0).string(function.source)
            for line in function.lines[block]:
                payload.word(line)
            payload.word(0).word(0)
            writer.record(GCOV_TAG_LINES, payload)

    return writer.blob()


def make_gcda(functions: List[Tuple[FunctionSpec, Optional[List[int]]]], *,
              version: int = VERSION_9_3, stamp: int = STAMP,
              big_endian: bool = False) -> bytes:
    """FUNCTIONS holds (function, counters) pairs; counters None writes
    an empty function record."""
    writer = Writer(big_endian)
    writer.word(GCOV_DATA_MAGIC).word(version).word(stamp)
    for function, counters in functions:
        if counters is None:
            writer.word(GCOV_TAG_FUNCTION).word(0)
            continue
        payload = writer.sub()
        payload.word(function.ident).word(function.lineno_checksum).word(function.cfg_checksum)
        writer.record(GCOV_TAG_FUNCTION, payload)
        payload = writer.sub()
        for value in counters:
            payload.counter(value)
        writer.record(GCOV_TAG_COUNTER_ARCS, payload)
    return writer.blob()


def on_tree_variant() -> FunctionSpec:
    """The sample function with the entry and exit arcs on the
    spanning tree."""
    return FunctionSpec(arcs=[(0, 2, GCOV_ARC_ON_TREE), (2, 3, 0), (2, 4, 0),
                              (3, 4, 0), (4, 1, GCOV_ARC_ON_TREE)])


def with_fake_arc() -> FunctionSpec:
    """The sample function with an extra fake arc out of block 2."""
    return FunctionSpec(arcs=SAMPLE_ARCS + [(2, 1, GCOV_ARC_FAKE)])
