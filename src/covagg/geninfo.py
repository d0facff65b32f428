# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
geninfo

  Generates coverage models from the notes (.gcno) and data (.gcda) files
  created by code instrumented with gcc's built-in profiling mechanism.

  A model built from notes alone (initial capture) records every
  instrumented line at zero; a model built from notes and data records
  the actual execution counts. Both can be merged safely.

"""

from typing import List, Dict, Tuple, Iterable, Optional
from concurrent.futures import ProcessPoolExecutor
from pathlib import Path
import base64
import hashlib
import os
import re

from .errors import CoverageError, MalformedData, MissingPair
from .model  import CoverageModel, SkippedUnit
from .types  import BranchOwners
from .notes  import Notes, Function, read_gcno
from .data   import Data, DataFunction, read_gcda, check_pair
from .aggregate import Accumulator
from .util   import sort_unique_lex, transform_pattern, info, warn

GCNO_SUFFIX = ".gcno"
GCDA_SUFFIX = ".gcda"


def solve_flow_graph(function: Function,
                     dfunction: Optional[DataFunction]) -> Tuple[List[int], List[int]]:
    """Return the execution counts (blocks, arcs) of FUNCTION.

    Counters of DFUNCTION are assigned to the instrumented arcs in order.
    The remaining arc and block counts are derived from flow conservation:
    the count of a block equals the sum of its incoming arcs and the sum
    of its outgoing arcs.
    """
    num_blocks = function.num_blocks or 0
    if dfunction is None:
        return ([0] * num_blocks, [0] * len(function.arcs))

    arc_count: List[Optional[int]] = [None] * len(function.arcs)
    counters = iter(dfunction.counters)
    for idx, arc in enumerate(function.arcs):
        if not arc.on_tree:
            arc_count[idx] = next(counters)

    out_arcs: List[List[int]] = [[] for _ in range(num_blocks)]
    in_arcs:  List[List[int]] = [[] for _ in range(num_blocks)]
    for idx, arc in enumerate(function.arcs):
        out_arcs[arc.src].append(idx)
        in_arcs[arc.dest].append(idx)

    block_count: List[Optional[int]] = [None if out_arcs[block] or in_arcs[block] else 0
                                        for block in range(num_blocks)]

    changed = True
    while changed:
        changed = False
        for block in range(num_blocks):
            if block_count[block] is None:
                for arcs in (out_arcs[block], in_arcs[block]):
                    if arcs and all(arc_count[idx] is not None for idx in arcs):
                        block_count[block] = sum(arc_count[idx] for idx in arcs)
                        changed = True
                        break
            if block_count[block] is None:
                continue
            for arcs in (out_arcs[block], in_arcs[block]):
                unknown = [idx for idx in arcs if arc_count[idx] is None]
                if len(unknown) != 1:
                    continue
                known = sum(arc_count[idx] for idx in arcs if arc_count[idx] is not None)
                rest  = block_count[block] - known
                if rest < 0:
                    raise MalformedData(f"inconsistent arc counts in function "
                                        f"{function.name}, block {block}")
                arc_count[unknown[0]] = rest
                changed = True

    if (any(count is None for count in block_count) or
        any(count is None for count in arc_count)):
        raise MalformedData(f"unsolvable flow graph in function {function.name}")

    return (block_count, arc_count)


def solve_relative_path(path: str, dir: str) -> str:
    """Return PATH made absolute against DIR and normalized."""
    return os.path.normpath(os.path.join(dir, path))


def build_model(notes: Notes, data: Optional[Data] = None, *,
                base_directory: Optional[Path] = None) -> CoverageModel:
    """Join the NOTES of a translation unit with its optional DATA.

    Without DATA every line, function and branch is recorded as
    instrumented with a count of zero.
    """
    if data is not None:
        check_pair(notes, data)

    if base_directory is not None:
        base_dir = str(base_directory)
    elif notes.cwd:
        base_dir = notes.cwd
    else:
        base_dir = os.path.dirname(os.path.abspath(notes.filename))

    model = CoverageModel()
    # (source, line) -> count; a line shared by several blocks gets
    # the largest block count
    line_counts: Dict[Tuple[str, int], int] = {}
    owners: BranchOwners = {}

    for function in notes.functions:
        dfunction = data.functions.get(function.ident) if data is not None else None
        try:
            block_count, arc_count = solve_flow_graph(function, dfunction)
        except MalformedData as exc:
            raise MalformedData(f"{data.filename}: {exc}") from None

        if function.artificial:
            continue

        for block, lines in function.block_lines.items():
            for source, line in lines:
                key = (solve_relative_path(source, base_dir), line)
                line_counts[key] = max(line_counts.get(key, 0), block_count[block])

        source = model.get_file(solve_relative_path(function.source, base_dir))
        source.add_function(function.name, function.start_line,
                            block_count[0] if block_count else 0)

        add_branches(model, function, block_count,
                     arc_count if dfunction is not None else None, base_dir, owners)

    for (filename, line), count in line_counts.items():
        model.get_file(filename).add_line(line, count)

    return model


def add_branches(model: CoverageModel, function: Function,
                 block_count: List[int], arc_count: Optional[List[int]],
                 base_dir: str, owners: Optional[BranchOwners] = None):
    """Add a branch record for every outgoing arc of blocks that
    have more than one non-fake successor. Taken counts stay unset
    without ARC_COUNT and for blocks that were never executed.

    OWNERS maps (source, line, block number) to the (function ident,
    block) which uses it in the current unit. A block number already
    taken by another block on the same line is moved to the next free
    number, so branches of functions sharing a line are kept apart.
    """
    if owners is None: owners = {}

    out_arcs: Dict[int, List[int]] = {}
    for idx, arc in enumerate(function.arcs):
        if not arc.fake:
            out_arcs.setdefault(arc.src, []).append(idx)

    for block, arcs in out_arcs.items():
        if len(arcs) < 2 or not function.block_lines.get(block):
            continue
        source, line = function.block_lines[block][-1]
        filename = solve_relative_path(source, base_dir)
        owner = (function.ident, block)
        block_no = block
        while owners.setdefault((filename, line, block_no), owner) != owner:
            block_no += 1
        source_file = model.get_file(filename)
        for branch, idx in enumerate(arcs):
            taken = None
            if arc_count is not None and block_count[block] > 0:
                taken = arc_count[idx]
            source_file.add_branch(line, block_no, branch, taken)


def get_unit_id(path: Path) -> str:
    """Return the unit identifier of a notes or data file: its path
    without suffix."""
    return str(path.with_suffix(""))


def find_units(directories: Iterable[Path]) -> Dict[str, Tuple[Optional[Path], Optional[Path]]]:
    """Return a dict unit id -> (notes path, data path) for all notes and
    data files found in DIRECTORIES (recursively)."""
    units: Dict[str, List[Optional[Path]]] = {}
    for directory in directories:
        directory = Path(directory)
        for suffix, idx in ((GCNO_SUFFIX, 0), (GCDA_SUFFIX, 1)):
            for path in directory.rglob(f"*{suffix}"):
                if not path.is_file():
                    continue
                units.setdefault(get_unit_id(path.resolve()), [None, None])[idx] = path
    return {unit: (paths[0], paths[1]) for unit, paths in units.items()}


def process_unit(unit: str, notes_path: Optional[Path], data_path: Optional[Path],
                 initial: bool, base_directory: Optional[Path]) -> Tuple[Optional[CoverageModel],
                                                                         Optional[SkippedUnit]]:
    """Build the model of one translation unit. Errors are returned as
    a SkippedUnit instead of being raised."""
    try:
        if notes_path is None:
            raise MissingPair(f"{data_path}: no notes file found")
        if data_path is None and not initial:
            raise MissingPair(f"{notes_path}: no data file found")
        notes = read_gcno(notes_path.read_bytes(), str(notes_path))
        data  = None
        if not initial:
            data = read_gcda(data_path.read_bytes(), str(data_path))
        return (build_model(notes, data, base_directory=base_directory), None)
    except (CoverageError, OSError) as exc:
        return (None, SkippedUnit(unit, type(exc).__name__, str(exc)))


def is_external(filename: str, internal_dirs: List[str]) -> bool:
    """Return True if filename lies outside of all INTERNAL_DIRS."""
    return not any(filename == dir or filename.startswith(dir.rstrip(os.sep) + os.sep)
                   for dir in internal_dirs)


def filter_source_files(model: CoverageModel,
                        include: Iterable[str] = (),
                        exclude: Iterable[str] = (),
                        internal_dirs: Optional[List[str]] = None):
    """Remove files from MODEL in place: those not matching any INCLUDE
    pattern (if given), those matching an EXCLUDE pattern, and those
    outside of INTERNAL_DIRS (if given)."""
    include = [re.compile(transform_pattern(pattern)) for pattern in include]
    exclude = [re.compile(transform_pattern(pattern)) for pattern in exclude]
    for filename in list(model.files):
        if ((include and not any(regex.fullmatch(filename) for regex in include)) or
            any(regex.fullmatch(filename) for regex in exclude) or
            (internal_dirs is not None and is_external(filename, internal_dirs))):
            del model.files[filename]


def get_source_checksums(filename: str) -> Optional[Dict[int, str]]:
    """Return a dict line number -> md5 base64 checksum (unpadded) of
    every line of source FILENAME, or None if it cannot be read."""
    try:
        fhandle = Path(filename).open("rb")
    except OSError:
        warn(f"WARNING: could not open {filename}")
        return None
    checksums = {}
    with fhandle:
        for lineno, line in enumerate(fhandle, 1):
            digest = hashlib.md5(line.rstrip(b"\r\n")).digest()
            checksums[lineno] = base64.b64encode(digest).decode("ascii").rstrip("=")
    return checksums


def apply_capture_options(model: CoverageModel, *,
                          checksum: bool = False,
                          function_coverage: bool = True,
                          branch_coverage: bool = True):
    """Drop the coverage kinds of MODEL that are disabled and add source
    line checksums if CHECKSUM is set, in place."""
    for filename, source_file in model.files.items():
        if not function_coverage:
            source_file.functions.clear()
        if not branch_coverage:
            source_file.branches.clear()
        if checksum:
            checksums = get_source_checksums(filename)
            if checksums is None:
                continue
            for record in source_file.lines.values():
                record.checksum = checksums.get(record.line)


def capture(directories: Iterable[Path], *,
            initial: bool = False,
            base_directory: Optional[Path] = None,
            include: Iterable[str] = (),
            exclude: Iterable[str] = (),
            external: bool = True,
            jobs: int = 1,
            checksum: bool = False,
            function_coverage: bool = True,
            branch_coverage: bool = True) -> CoverageModel:
    """Capture coverage data from all notes/data pairs found in DIRECTORIES.

    With INITIAL set, only notes are read and all counts are zero.
    Translation units which cannot be processed are skipped with a
    warning and listed in the skipped units of the result. With CHECKSUM
    set, every line record carries the checksum of its source line.
    """
    directories = [Path(directory) for directory in directories]
    units = find_units(directories)
    info("Found {} {} in {}".format(len(units),
                                    "unit" if len(units) == 1 else "units",
                                    ", ".join(str(dir) for dir in directories)))

    unit_ids = sort_unique_lex(units)
    if initial:
        # Data without notes cannot contribute to an initial capture
        unit_ids = [unit for unit in unit_ids if units[unit][0] is not None]
    tasks = [(unit, units[unit][0], units[unit][1], initial, base_directory)
             for unit in unit_ids]

    if jobs > 1 and len(tasks) > 1:
        with ProcessPoolExecutor(max_workers=jobs) as executor:
            results = list(executor.map(process_unit, *zip(*tasks)))
    else:
        results = [process_unit(*task) for task in tasks]

    accumulator = Accumulator()
    for fragment, skipped in results:
        if skipped is not None:
            warn(f"WARNING: skipping {skipped.unit}: {skipped.reason}")
            accumulator.model.skipped.append(skipped)
        else:
            accumulator.add(fragment)
    model = accumulator.result()

    internal_dirs = None
    if not external:
        internal_dirs = [str(dir.resolve()) for dir in directories]
        if base_directory is not None:
            internal_dirs.append(str(Path(base_directory).resolve()))
    filter_source_files(model, include, exclude, internal_dirs)
    apply_capture_options(model, checksum=checksum,
                          function_coverage=function_coverage,
                          branch_coverage=branch_coverage)

    return model


def initial_capture(directories: Iterable[Path], **kwargs) -> CoverageModel:
    """Capture zero coverage data for all notes found in DIRECTORIES."""
    return capture(directories, initial=True, **kwargs)


def zero_counters(directories: Iterable[Path]) -> int:
    """Delete all data files found in DIRECTORIES. Return their number."""
    count = 0
    for directory in directories:
        for path in Path(directory).rglob(f"*{GCDA_SUFFIX}"):
            if path.is_file():
                path.unlink()
                count += 1
    info(f"Deleted {count} data files")
    return count
