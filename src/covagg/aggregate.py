# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
aggregate

  Merging of coverage models. The merge is associative and commutative:
  execution counts are added, the instrumented flag is or-ed, and branch
  taken counts are added with a missing count ("-") acting as identity.
  Input models are never modified.

"""

from typing import List, Dict, Iterable, Optional
from pathlib import Path
import copy
import re

from .errors import IncompatibleRecord
from .model  import CoverageModel, SourceFile, Tracefile
from .model  import LineRecord, FunctionRecord, BranchRecord, add_counts
from .util   import transform_pattern, info


def merge_lines(lines1: Dict[int, LineRecord],
                lines2: Dict[int, LineRecord],
                filename: str) -> Dict[int, LineRecord]:
    """Return the combined line records in which execution counts
    are added. Raise IncompatibleRecord if a checksum for a line is
    defined in both but does not match.
    """
    result: Dict[int, LineRecord] = {line: copy.copy(record)
                                     for line, record in lines1.items()}
    for line, record2 in lines2.items():
        record = result.get(line)
        if record is None:
            result[line] = copy.copy(record2)
            continue
        if (record.checksum is not None and record2.checksum is not None and
            record.checksum != record2.checksum):
            raise IncompatibleRecord(f"checksum mismatch at {filename}:{line}")
        record.hits = add_counts(record.hits, record2.hits)
        record.instrumented = record.instrumented or record2.instrumented
        if record.checksum is None:
            record.checksum = record2.checksum

    return result


def merge_func_data(funcs1: Dict[str, FunctionRecord],
                    funcs2: Dict[str, FunctionRecord],
                    filename: str) -> Dict[str, FunctionRecord]:
    """Add function call count data. Raise IncompatibleRecord if
    a function is defined at different lines."""
    result: Dict[str, FunctionRecord] = {name: copy.copy(record)
                                         for name, record in funcs1.items()}
    for name, record2 in funcs2.items():
        record = result.get(name)
        if record is None:
            result[name] = copy.copy(record2)
            continue
        if record.line != record2.line:
            raise IncompatibleRecord(f"function data mismatch at {filename}: "
                                     f"{name} starts at line {record.line} "
                                     f"and at line {record2.line}")
        record.hits = add_counts(record.hits, record2.hits)

    return result


def combine_brcount(branches1: Dict, branches2: Dict) -> Dict:
    """Add branch coverage data. A branch without taken data
    in one of the inputs takes the value of the other."""
    result = {key: copy.copy(record) for key, record in branches1.items()}
    for key, record2 in branches2.items():
        record: Optional[BranchRecord] = result.get(key)
        if record is None:
            result[key] = copy.copy(record2)
        elif record2.taken is not None:
            record.taken = (record2.taken if record.taken is None else
                            add_counts(record.taken, record2.taken))

    return result


def combine_source_files(source1: SourceFile, source2: SourceFile) -> SourceFile:
    """Combine the data of two records of the same source file.
    Return a new SourceFile."""
    filename = source1.path
    return SourceFile(filename,
                      merge_lines(source1.lines, source2.lines, filename),
                      merge_func_data(source1.functions, source2.functions, filename),
                      combine_brcount(source1.branches, source2.branches))


class Accumulator:
    """Incremental merge of coverage models.

    Each add() either merges the whole model or, on IncompatibleRecord,
    leaves the accumulated data untouched.
    """

    def __init__(self):
        self.model = CoverageModel()
        self.count = 0

    def add(self, model: CoverageModel):
        combined: Dict[str, SourceFile] = {}
        for filename, source in model.files.items():
            current = self.model.files.get(filename)
            combined[filename] = (copy.deepcopy(source) if current is None else
                                  combine_source_files(current, source))
        self.model.files.update(combined)
        self.model.skipped.extend(model.skipped)
        self.count += 1

    def result(self) -> CoverageModel:
        """Return a copy of the data merged so far."""
        result = copy.deepcopy(self.model)
        result.skipped = sorted(set(result.skipped))
        return result


def merge(models: Iterable[CoverageModel]) -> CoverageModel:
    """Merge MODELS in any order into a new CoverageModel."""
    accumulator = Accumulator()
    for model in models:
        accumulator.add(model)
    return accumulator.result()


def select(model: CoverageModel, patterns: Iterable[str], *,
           keep: bool) -> CoverageModel:
    """Return a copy of MODEL with the files matching any of the shell
    wildcard PATTERNS kept (KEEP set) or removed (KEEP not set)."""
    regexes = [re.compile(transform_pattern(pattern)) for pattern in patterns]
    result = CoverageModel(skipped=list(model.skipped))
    for filename, source in model.files.items():
        matched = any(regex.fullmatch(filename) for regex in regexes)
        if matched == keep:
            result.files[filename] = copy.deepcopy(source)
    return result


def extract(model: CoverageModel, patterns: Iterable[str]) -> CoverageModel:
    """Keep only data for files matching PATTERNS."""
    result = select(model, patterns, keep=True)
    info(f"Extracted {len(result)} files")
    return result


def remove(model: CoverageModel, patterns: Iterable[str]) -> CoverageModel:
    """Remove data for files matching PATTERNS."""
    result = select(model, patterns, keep=False)
    info(f"Removed {len(model) - len(result)} files")
    return result


def merge_tracefiles(tracefiles: Iterable[Path], name: str = "",
                     **kwargs) -> Tracefile:
    """Read and combine all TRACEFILES into a Tracefile named NAME.
    KWARGS are passed to the tracefile reader."""
    from .tracefile import load

    info("Combining tracefiles.")
    snapshots: List[CoverageModel] = [load(Path(tracefile), **kwargs)
                                      for tracefile in tracefiles]
    return Tracefile.from_snapshots(name, snapshots)
