# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
model

  Coverage data model shared by the capture, the tracefile reader and
  writer, the aggregator and the report generator.

  A SourceFile distinguishes three states for every line:

    ABSENT - no record: the line is not executable or was never compiled
    ZERO   - instrumented, not executed
    HIT    - instrumented, executed at least once

"""

from typing import List, Dict, Optional, NamedTuple
from dataclasses import dataclass, field
import enum

from .types import BranchKey, FoundHit

# Hit counts saturate at the width of a gcov counter
COUNTER_MAX = 2**64 - 1


def add_counts(count1: int, count2: int) -> int:
    """Return the saturated sum of two execution counts."""
    return min(count1 + count2, COUNTER_MAX)


class LineState(enum.Enum):
    ABSENT = "absent"
    ZERO   = "zero"
    HIT    = "hit"


class SkippedUnit(NamedTuple):
    """A translation unit left out of a capture and the reason why."""
    unit:   str
    error:  str  # name of the error class
    reason: str


@dataclass
class LineRecord:
    line:         int
    hits:         int = 0
    instrumented: bool = True
    checksum:     Optional[str] = None

    @property
    def state(self) -> LineState:
        if not self.instrumented:
            return LineState.ABSENT
        return LineState.HIT if self.hits > 0 else LineState.ZERO


@dataclass
class FunctionRecord:
    name: str
    line: int
    hits: int = 0


@dataclass
class BranchRecord:
    line:   int
    block:  int
    branch: int
    taken:  Optional[int] = None  # None: no taken-count data ("-")

    @property
    def key(self) -> BranchKey:
        return (self.line, self.block, self.branch)


@dataclass
class SourceFile:
    path:      str
    lines:     Dict[int, LineRecord]     = field(default_factory=dict)
    functions: Dict[str, FunctionRecord] = field(default_factory=dict)
    branches:  Dict[BranchKey, BranchRecord] = field(default_factory=dict)

    def add_line(self, line: int, hits: int = 0,
                 checksum: Optional[str] = None) -> LineRecord:
        """Add HITS to LINE, creating an instrumented record if needed."""
        record = self.lines.get(line)
        if record is None:
            record = self.lines[line] = LineRecord(line, 0, True, checksum)
        record.hits = add_counts(record.hits, hits)
        record.instrumented = True
        if record.checksum is None:
            record.checksum = checksum
        return record

    def add_function(self, name: str, line: int, hits: int = 0) -> FunctionRecord:
        record = self.functions.get(name)
        if record is None:
            record = self.functions[name] = FunctionRecord(name, line, 0)
        record.hits = add_counts(record.hits, hits)
        return record

    def add_branch(self, line: int, block: int, branch: int,
                   taken: Optional[int] = None) -> BranchRecord:
        key = (line, block, branch)
        record = self.branches.get(key)
        if record is None:
            record = self.branches[key] = BranchRecord(line, block, branch, taken)
        elif taken is not None:
            record.taken = taken if record.taken is None else add_counts(record.taken, taken)
        return record

    def line_records(self) -> List[LineRecord]:
        """Return the line records ordered by line number."""
        return [self.lines[line] for line in sorted(self.lines)]

    def function_records(self) -> List[FunctionRecord]:
        """Return the function records ordered by line, then name."""
        return sorted(self.functions.values(), key=lambda fn: (fn.line, fn.name))

    def branch_records(self) -> List[BranchRecord]:
        return [self.branches[key] for key in sorted(self.branches)]

    def line_state(self, line: int) -> LineState:
        record = self.lines.get(line)
        return LineState.ABSENT if record is None else record.state

    def get_line_found_and_hit(self) -> FoundHit:
        """Return (found, hit) for instrumented lines."""
        found = hit = 0
        for record in self.lines.values():
            if not record.instrumented:
                continue
            found += 1
            if record.hits > 0:
                hit += 1
        return (found, hit)

    def get_func_found_and_hit(self) -> FoundHit:
        """Return (fn_found, fn_hit)"""
        fn_found = len(self.functions)
        fn_hit   = sum(1 for record in self.functions.values() if record.hits > 0)
        return (fn_found, fn_hit)

    def get_branch_found_and_hit(self) -> FoundHit:
        """Return (br_found, br_hit). Branches without taken data count
        as found but not hit."""
        br_found = len(self.branches)
        br_hit   = sum(1 for record in self.branches.values()
                       if record.taken is not None and record.taken > 0)
        return (br_found, br_hit)


@dataclass
class CoverageModel:
    files:   Dict[str, SourceFile] = field(default_factory=dict)
    skipped: List[SkippedUnit]     = field(default_factory=list, compare=False)

    def get_file(self, path: str) -> SourceFile:
        """Return the SourceFile for PATH, creating it on first use."""
        source = self.files.get(path)
        if source is None:
            source = self.files[path] = SourceFile(path)
        return source

    def __contains__(self, path: str) -> bool:
        return path in self.files

    def __len__(self) -> int:
        return len(self.files)


@dataclass
class Tracefile:
    """A named, ordered sequence of coverage snapshots plus their merge."""
    name:      str
    snapshots: List[CoverageModel] = field(default_factory=list)
    merged:    CoverageModel       = field(default_factory=CoverageModel)

    @classmethod
    def from_snapshots(cls, name: str, snapshots: List[CoverageModel]) -> "Tracefile":
        from .aggregate import merge
        return cls(name, list(snapshots), merge(snapshots))
