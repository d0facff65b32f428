# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
tracefile

  Reading and writing of tracefiles. Two formats are supported:

  .info - the lcov text format:

    TN:<test name>
    SF:<absolute path to the source file>
    FN:<line number of function start>,<function name>
    FNDA:<execution count>,<function name>
    FNF:<number of functions found>
    FNH:<number of functions hit>
    BRDA:<line number>,<block number>,<branch number>,<taken|->
    BRF:<number of branches found>
    BRH:<number of branches hit>
    DA:<line number>,<execution count>[,<checksum>]
    LF:<number of instrumented lines>
    LH:<number of lines with a non-zero execution count>
    end_of_record

  .json - a JSON document holding the same records.

  Skipped translation units are kept as '#SKIP:' comment lines in .info
  files and as a "skipped" list in .json files.

"""

from typing import Dict, Optional, TextIO
from pathlib import Path
import gzip
import json
import re

from .errors import MalformedTracefile
from .model  import CoverageModel, SourceFile, SkippedUnit
from .model  import LineRecord, FunctionRecord, BranchRecord
from .types  import FoundHitTotals
from .aggregate import combine_source_files
from .util   import info, warn

SKIP_PREFIX = "#SKIP:"


def read_info_file(tracefile: Path, *,
                   function_coverage: bool = True,
                   branch_coverage: bool = True) -> CoverageModel:
    """Read in the contents of the .info file specified by TRACEFILE.

    Sections referring to the same source file are combined by adding
    all execution counts. If TRACEFILE ends with ".gz", it is assumed
    that the file is compressed using GZIP.

    Raise OSError if the file cannot be read and MalformedTracefile if
    it is not UTF-8 text.
    """
    tracefile = Path(tracefile)
    info(f"Reading tracefile {tracefile}")

    if tracefile.suffix == ".gz":
        fhandle = gzip.open(tracefile, "rt", encoding="utf-8")
    else:
        fhandle = tracefile.open("rt", encoding="utf-8")

    with fhandle:
        try:
            return parse_info(fhandle, str(tracefile),
                              function_coverage=function_coverage,
                              branch_coverage=branch_coverage)
        except UnicodeDecodeError as exc:
            raise MalformedTracefile(f"{tracefile}: not a text file: {exc}") from None


def parse_info(lines, tracefile: str = "<tracefile>", *,
               function_coverage: bool = True,
               branch_coverage: bool = True) -> CoverageModel:
    """Parse lines of .info data into a CoverageModel."""
    result = CoverageModel()

    negative = False  # If set, warn about negative counts
    source:   Optional[SourceFile] = None
    fncounts: Dict[str, int] = {}

    for lineno, line in enumerate(lines, 1):
        line = line.rstrip("\n")

        if line.startswith(SKIP_PREFIX):
            fields = line[len(SKIP_PREFIX):].split("\t", 2)
            if len(fields) == 3:
                result.skipped.append(SkippedUnit(fields[1], fields[0], fields[2]))
            continue

        match = re.match(r"^[SK]F:(.*)", line)
        if match:
            # Filename information found
            source   = SourceFile(match.group(1))
            fncounts = {}
            continue

        if line.startswith("TN:") or line.startswith("#") or not line.strip():
            continue

        if source is None:
            warn(f"WARNING: {tracefile}:{lineno}: record outside of a file section")
            continue

        match = re.match(r"^DA:(\d+),(-?\d+)(?:,([^,\s]+))?", line)
        if match:
            count = int(match.group(2))
            # Fix negative counts
            if count < 0:
                count = 0
                negative = True
            record = source.add_line(int(match.group(1)), count)
            # Store line checksum if available
            if match.group(3) is not None:
                record.checksum = match.group(3)
            continue

        match = re.match(r"^FN:(\d+),(.+)", line)
        if match:
            if function_coverage:
                # Function data found, add to structure
                source.add_function(match.group(2), int(match.group(1)))
            continue

        match = re.match(r"^FNDA:(-?\d+),(.+)", line)
        if match:
            if function_coverage:
                count = int(match.group(1))
                if count < 0:
                    count = 0
                    negative = True
                name = match.group(2)
                fncounts[name] = fncounts.get(name, 0) + count
            continue

        match = re.match(r"^BRDA:(\d+),(\d+),(\d+),(\d+|-)", line)
        if match:
            # Branch coverage data found
            if branch_coverage:
                taken = None if match.group(4) == "-" else int(match.group(4))
                source.add_branch(int(match.group(1)), int(match.group(2)),
                                  int(match.group(3)), taken)
            continue

        if re.match(r"^(FNF|FNH|BRF|BRH|LF|LH):\d+", line):
            # Summary values are recalculated
            continue

        if line == "end_of_record":
            # Found end of section marker
            for name, count in fncounts.items():
                function = source.functions.get(name)
                if function is None:
                    warn(f"WARNING: {tracefile}: call count for unknown "
                         f"function {name} in {source.path}")
                    continue
                source.add_function(name, function.line, count)
            current = result.files.get(source.path)
            result.files[source.path] = (source if current is None else
                                         combine_source_files(current, source))
            source = None
            continue

        warn(f"WARNING: {tracefile}:{lineno}: unrecognized line: {line}")

    if source is not None:
        warn(f"WARNING: {tracefile}: missing end_of_record for {source.path}")
    if negative:
        warn(f"WARNING: negative counts found in tracefile {tracefile}")

    return result


def write_info_file(fhandle: TextIO, model: CoverageModel,
                    test_name: str = "", *,
                    checksum: bool = True) -> FoundHitTotals:
    """Write MODEL in .info format to FHANDLE.
    Return (lines found, lines hit, functions found, functions hit,
    branches found, branches hit)."""
    ln_total_found = 0
    ln_total_hit   = 0
    fn_total_found = 0
    fn_total_hit   = 0
    br_total_found = 0
    br_total_hit   = 0

    for skipped in model.skipped:
        print(f"{SKIP_PREFIX}{skipped.error}\t{skipped.unit}\t{skipped.reason}",
              file=fhandle)

    for filename in sorted(model.files):
        source = model.files[filename]

        print(f"TN:{test_name}", file=fhandle)
        print(f"SF:{filename}",  file=fhandle)

        # Write function related data
        functions = source.function_records()
        for function in functions:
            print(f"FN:{function.line},{function.name}", file=fhandle)
        for function in functions:
            print(f"FNDA:{function.hits},{function.name}", file=fhandle)
        fn_found, fn_hit = source.get_func_found_and_hit()
        print(f"FNF:{fn_found}", file=fhandle)
        print(f"FNH:{fn_hit}",   file=fhandle)

        # Write branch related data
        for branch in source.branch_records():
            taken = "-" if branch.taken is None else branch.taken
            print(f"BRDA:{branch.line},{branch.block},{branch.branch},{taken}",
                  file=fhandle)
        br_found, br_hit = source.get_branch_found_and_hit()
        if br_found > 0:
            print(f"BRF:{br_found}", file=fhandle)
            print(f"BRH:{br_hit}",   file=fhandle)

        # Write line related data
        for record in source.line_records():
            if not record.instrumented:
                continue
            print(f"DA:{record.line},{record.hits}" +
                  (f",{record.checksum}" if checksum and record.checksum else ""),
                  file=fhandle)
        ln_found, ln_hit = source.get_line_found_and_hit()
        print(f"LF:{ln_found}", file=fhandle)
        print(f"LH:{ln_hit}",   file=fhandle)
        print("end_of_record",  file=fhandle)

        # Add to totals
        ln_total_found += ln_found
        ln_total_hit   += ln_hit
        fn_total_found += fn_found
        fn_total_hit   += fn_hit
        br_total_found += br_found
        br_total_hit   += br_hit

    return (ln_total_found, ln_total_hit,
            fn_total_found, fn_total_hit,
            br_total_found, br_total_hit)


def model_to_json(model: CoverageModel, test_name: str = "") -> Dict:
    """Return MODEL as a JSON compatible dict."""
    files = []
    for filename in sorted(model.files):
        source = model.files[filename]
        files.append({
            "path": filename,
            "lines": [{"line": record.line, "hits": record.hits,
                       "instrumented": record.instrumented,
                       "checksum": record.checksum}
                      for record in source.line_records()],
            "functions": [{"name": function.name, "line": function.line,
                           "hits": function.hits}
                          for function in source.function_records()],
            "branches": [{"line": branch.line, "block": branch.block,
                          "branch": branch.branch, "taken": branch.taken}
                         for branch in source.branch_records()],
        })
    return {
        "test_name": test_name,
        "files": files,
        "skipped": [skipped._asdict() for skipped in model.skipped],
    }


def model_from_json(document: Dict, source: str = "<document>") -> CoverageModel:
    """Return the CoverageModel of a dict created by model_to_json().

    Raise MalformedTracefile if DOCUMENT does not have that shape.
    """
    try:
        return get_json_model(document)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise MalformedTracefile(f"{source}: invalid JSON tracefile: "
                                 f"{type(exc).__name__}: {exc}") from None


def get_json_model(document: Dict) -> CoverageModel:
    model = CoverageModel()
    for entry in document.get("files", []):
        source = model.get_file(entry["path"])
        for item in entry.get("lines", []):
            source.lines[item["line"]] = LineRecord(item["line"], item["hits"],
                                                    item.get("instrumented", True),
                                                    item.get("checksum"))
        for item in entry.get("functions", []):
            source.functions[item["name"]] = FunctionRecord(item["name"], item["line"],
                                                            item["hits"])
        for item in entry.get("branches", []):
            branch = BranchRecord(item["line"], item["block"], item["branch"],
                                  item.get("taken"))
            source.branches[branch.key] = branch
    model.skipped = [SkippedUnit(**item) for item in document.get("skipped", [])]
    return model


def dump_json(fhandle: TextIO, model: CoverageModel, test_name: str = ""):
    json.dump(model_to_json(model, test_name), fhandle, indent=1)
    fhandle.write("\n")


def load_json(fhandle: TextIO) -> CoverageModel:
    source = getattr(fhandle, "name", "<stream>")
    try:
        document = json.load(fhandle)
    except ValueError as exc:
        raise MalformedTracefile(f"{source}: invalid JSON: {exc}") from None
    return model_from_json(document, source)


def save(model: CoverageModel, filename: Path, test_name: str = "", *,
         checksum: bool = True) -> Optional[FoundHitTotals]:
    """Write MODEL to FILENAME; the format is selected by its suffix.
    A ".gz" suffix writes GZIP compressed .info data."""
    filename = Path(filename)
    info(f"Writing data to {filename}")
    opener = gzip.open if filename.suffix == ".gz" else open
    with opener(filename, "wt", encoding="utf-8") as fhandle:
        if filename.suffix == ".json":
            dump_json(fhandle, model, test_name)
            return None
        return write_info_file(fhandle, model, test_name, checksum=checksum)


def load(filename: Path, **kwargs) -> CoverageModel:
    """Read a tracefile; the format is selected by its suffix."""
    filename = Path(filename)
    if filename.suffix == ".json":
        info(f"Reading tracefile {filename}")
        with filename.open("rt", encoding="utf-8") as fhandle:
            return load_json(fhandle)
    return read_info_file(filename, **kwargs)


def write_model(fhandle: TextIO, model: CoverageModel, test_name: str = "",
                json_format: bool = False, *, checksum: bool = True):
    """Write MODEL to a text stream in either format."""
    if json_format:
        dump_json(fhandle, model, test_name)
    else:
        write_info_file(fhandle, model, test_name, checksum=checksum)
