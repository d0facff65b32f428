# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
genreport

  Computes coverage rates of a merged coverage model and renders them:
  as a machine-readable JSON summary, as a text listing and as a set
  of navigable HTML index pages (one per directory).

"""

from typing import List, Dict, Optional, NamedTuple, TextIO
from pathlib import Path
from html import escape as escape_html
import abc
import json
import os

from .model import CoverageModel, SkippedUnit
from .types import FoundHit
from .util  import get_common_prefix, sort_unique, info

# Marker for rates with a zero denominator
NOT_APPLICABLE = "-"

default_precision = 1


def rate(hit: int, found: Optional[int],
         suffix: Optional[str] = None,
         precision: Optional[int] = None,
         width: Optional[int] = None) -> str:
    """Return the coverage rate [0..100] for HIT and FOUND values.
    0 is only returned when HIT is 0. 100 is only returned when HIT equals FOUND.
    PRECISION specifies the precision of the result. SUFFIX defines a
    string that is appended to the result if FOUND is non-zero. Spaces
    are added to the start of the resulting string until it is at least
    WIDTH characters wide.
    """
    # Assign defaults if necessary
    if precision is None: precision = default_precision
    if suffix    is None: suffix    = ""
    if width     is None: width     = 0

    if found is None or found == 0:
        return "%*s" % (width, NOT_APPLICABLE)

    value = "%.*f" % (precision, hit * 100 / found)
    # Adjust rates if necessary
    if float(value) == 0 and hit > 0:
        value = "%.*f" % (precision, 1 / 10 ** precision)
    elif float(value) == 100 and hit != found:
        value = "%.*f" % (precision, 100 - 1 / 10 ** precision)

    return "%*s" % (width, value + suffix)


class Rate(NamedTuple):
    hit:   int
    found: int

    @classmethod
    def from_found_hit(cls, found_hit: FoundHit) -> "Rate":
        found, hit = found_hit
        return cls(hit, found)

    def percent(self, precision: Optional[int] = None) -> Optional[float]:
        """Return the rate as a number, None if it is undefined."""
        if self.found == 0:
            return None
        return float(rate(self.hit, self.found, precision=precision))

    def format(self, precision: Optional[int] = None) -> str:
        return rate(self.hit, self.found, "%", precision)

    def __add__(self, other: "Rate") -> "Rate":
        return Rate(self.hit + other.hit, self.found + other.found)


class FileSummary(NamedTuple):
    path:      str
    display:   str  # path relative to the common prefix
    lines:     Rate
    functions: Rate
    branches:  Rate


class Summary(NamedTuple):
    title:   str
    prefix:  str
    files:   List[FileSummary]
    total:   FileSummary
    skipped: List[SkippedUnit]


def summarize(model: CoverageModel, title: str = "") -> Summary:
    """Compute per-file and total rates of MODEL. Files are ordered
    by path."""
    prefix = get_common_prefix(model.files)
    files: List[FileSummary] = []
    total_lines = total_functions = total_branches = Rate(0, 0)
    for filename in sorted(model.files):
        source = model.files[filename]
        lines     = Rate.from_found_hit(source.get_line_found_and_hit())
        functions = Rate.from_found_hit(source.get_func_found_and_hit())
        branches  = Rate.from_found_hit(source.get_branch_found_and_hit())
        display = (os.path.relpath(filename, prefix) if prefix else
                   os.path.normpath(filename))
        files.append(FileSummary(filename, display, lines, functions, branches))
        total_lines     += lines
        total_functions += functions
        total_branches  += branches

    total = FileSummary("", "Total", total_lines, total_functions, total_branches)
    return Summary(title, prefix, files, total, list(model.skipped))


def summary_to_json(summary: Summary, precision: Optional[int] = None) -> Dict:
    """Return SUMMARY as a JSON compatible dict; undefined rates are null."""

    def metrics(entry: FileSummary) -> Dict:
        return {name: {"hit": value.hit, "found": value.found,
                       "rate": value.percent(precision)}
                for name, value in (("lines",     entry.lines),
                                    ("functions", entry.functions),
                                    ("branches",  entry.branches))}

    return {
        "title":  summary.title,
        "prefix": summary.prefix,
        "files":  [dict(path=entry.path, display=entry.display, **metrics(entry))
                   for entry in summary.files],
        "total":  metrics(summary.total),
        "skipped": [skipped._asdict() for skipped in summary.skipped],
    }


def shorten_filename(filename: str, width: int) -> str:
    """Truncate FILENAME from the left to WIDTH characters."""
    if len(filename) <= width:
        return filename
    return "..." + filename[len(filename) - width + 3:]


def render_list(summary: Summary, width: int = 80,
                precision: Optional[int] = None) -> str:
    """Return a text listing of SUMMARY, grouped by directory relative
    to the common prefix."""
    columns = " |{:>8} {:>7}" * 3
    name_width = max([len("Filename")] +
                     [len(os.path.basename(entry.display)) + 2 for entry in summary.files])
    name_width = min(name_width, max(width - len(columns.format(*[""] * 6)), 12))

    def row(name: str, entry: FileSummary) -> str:
        return ("{:<{w}}".format(shorten_filename(name, name_width), w=name_width) +
                columns.format(entry.lines.format(precision),     entry.lines.found,
                               entry.functions.format(precision), entry.functions.found,
                               entry.branches.format(precision),  entry.branches.found))

    heading1 = "{:<{w}} |{:<16} |{:<16} |{:<16}".format("", "Lines", "Functions",
                                                        "Branches", w=name_width)
    heading2 = "{:<{w}}".format("Filename", w=name_width) + columns.format(
        "Rate", "Num", "Rate", "Num", "Rate", "Num")
    bar = "=" * len(heading2)

    out = [heading1, heading2, bar]
    if summary.prefix:
        out.append(f"[{summary.prefix}/]")
    lastpath = None
    for entry in summary.files:
        dirname, basename = os.path.split(entry.display)
        if dirname != lastpath:
            if dirname:
                out.append(f"[{dirname}/]")
            lastpath = dirname
        out.append(row("  " + basename if dirname else basename, entry))
    out.append(bar)
    out.append(row("Total:".rjust(name_width), summary.total))

    if summary.skipped:
        out.append("")
        out.append("Skipped units:")
        for skipped in summary.skipped:
            out.append(f"  {skipped.unit}: {skipped.error}: {skipped.reason}")

    return "\n".join(out) + "\n"


def group_by_directory(summary: Summary) -> Dict[str, List[FileSummary]]:
    """Return a dict relative directory -> file summaries."""
    groups: Dict[str, List[FileSummary]] = {}
    for entry in summary.files:
        groups.setdefault(os.path.dirname(entry.display), []).append(entry)
    return groups


def write_file_table(entries, precision: Optional[int]) -> str:
    """Return an HTML table of (name, link, FileSummary) entries."""
    html = ["<table>",
            "<tr><th>Name</th>"
            "<th>Lines</th><th>Hit / Total</th>"
            "<th>Functions</th><th>Hit / Total</th>"
            "<th>Branches</th><th>Hit / Total</th></tr>"]
    for name, link, entry in entries:
        cell = (f'<a href="{escape_html(link)}">{escape_html(name)}</a>'
                if link else escape_html(name))
        html.append(f"<tr><td>{cell}</td>" + "".join(
            f"<td>{value.format(precision)}</td><td>{value.hit} / {value.found}</td>"
            for value in (entry.lines, entry.functions, entry.branches)) + "</tr>")
    html.append("</table>")
    return "\n".join(html)


def write_html_page(title: str, body: str) -> str:
    return ("<!DOCTYPE html>\n<html>\n<head>\n"
            '<meta charset="utf-8">\n'
            f"<title>{escape_html(title)}</title>\n"
            "</head>\n<body>\n"
            f"<h1>{escape_html(title)}</h1>\n"
            f"{body}\n"
            "</body>\n</html>\n")


def get_page_dir(dirname: str) -> str:
    """Return the page directory of source directory DIRNAME, relative
    to the report root. A root anchor becomes '_root' and '..' becomes
    '_parent'; other names starting with '_' get one more '_'."""
    path  = Path(dirname)
    parts = []
    for part in path.parts:
        if path.anchor and part == path.anchor:
            parts.append("_root")
        elif part == "..":
            parts.append("_parent")
        elif part.startswith("_"):
            parts.append("_" + part)
        elif part != ".":
            parts.append(part)
    return Path(*parts).as_posix() if parts else ""


def render_html(summary: Summary,
                precision: Optional[int] = None) -> Dict[str, str]:
    """Return a dict relative page name -> HTML content: an index.html
    listing directories, plus one index.html per directory listing
    its files. Files located directly in the common prefix are listed
    on the top level page."""
    pages: Dict[str, str] = {}
    groups = group_by_directory(summary)
    title  = summary.title or "Coverage report"

    dir_entries = []
    for dirname in sort_unique(groups):
        if not dirname:
            continue
        entries = groups[dirname]
        file_table = write_file_table([(os.path.basename(entry.display), None, entry)
                                       for entry in entries], precision)
        total = FileSummary(dirname, dirname,
                            sum((entry.lines     for entry in entries), Rate(0, 0)),
                            sum((entry.functions for entry in entries), Rate(0, 0)),
                            sum((entry.branches  for entry in entries), Rate(0, 0)))
        page_dir = get_page_dir(dirname)
        page = f"{page_dir}/index.html"
        dir_entries.append((dirname, page, total))

        back = "../" * len(Path(page_dir).parts) + "index.html"
        body = (f'<p><a href="{back}">top level</a> - '
                f"{escape_html(os.path.join(summary.prefix, dirname))}</p>\n"
                f"{file_table}")
        pages[page] = write_html_page(f"{title} - {dirname}", body)

    body = [f"<p>{escape_html(summary.prefix)}</p>"]
    if dir_entries:
        body.append("<h2>Directories</h2>")
        body.append(write_file_table(dir_entries, precision))
    if "" in groups:
        body.append("<h2>Files</h2>")
        body.append(write_file_table([(entry.display, None, entry)
                                      for entry in groups[""]], precision))
    body.append("<h2>Total</h2>")
    body.append(write_file_table([("Total", None, summary.total)], precision))
    if summary.skipped:
        body.append("<h2>Skipped units</h2>\n<ul>")
        for skipped in summary.skipped:
            body.append(f"<li>{escape_html(skipped.unit)}: "
                        f"{escape_html(skipped.error)}: {escape_html(skipped.reason)}</li>")
        body.append("</ul>")
    pages["index.html"] = write_html_page(title, "\n".join(body))

    return pages


class ReportSink(abc.ABC):
    """Destination of a report: receives the structured summary and the
    rendered documents."""

    @abc.abstractmethod
    def write_summary(self, summary: Dict):
        """Receive the JSON compatible SUMMARY of the report."""

    @abc.abstractmethod
    def write_document(self, name: str, content: str):
        """Receive the rendered document NAME, a relative path."""


class DirectorySink(ReportSink):
    """Writes summary.json and the documents below OUTPUT_DIR."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def write_summary(self, summary: Dict):
        self.write_document("summary.json", json.dumps(summary, indent=1) + "\n")

    def write_document(self, name: str, content: str):
        root = self.output_dir.resolve()
        path = (root/name).resolve()
        if root not in path.parents:
            raise ValueError(f"document {name!r} lies outside of {self.output_dir}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


class StreamSink(ReportSink):
    """Writes the summary and the documents to a text stream."""

    def __init__(self, stream: TextIO, *, summary: bool = True):
        self.stream  = stream
        self.summary = summary

    def write_summary(self, summary: Dict):
        if self.summary:
            json.dump(summary, self.stream, indent=1)
            self.stream.write("\n")

    def write_document(self, name: str, content: str):
        self.stream.write(content)


def generate_report(model: CoverageModel, sink: ReportSink, *,
                    style: str = "html",
                    title: str = "",
                    precision: Optional[int] = None,
                    width: int = 80) -> Summary:
    """Compute the rates of MODEL and write the JSON summary and the
    rendering selected by STYLE ("html", "text" or "json" for the
    summary only) to SINK. MODEL is not modified."""
    if style not in ("html", "text", "json"):
        raise ValueError(f"unknown report style: {style}")

    summary = summarize(model, title)
    sink.write_summary(summary_to_json(summary, precision))
    if style == "html":
        pages = render_html(summary, precision)
        for name in sorted(pages):
            sink.write_document(name, pages[name])
        info(f"Writing {len(pages)} HTML pages")
    elif style == "text":
        sink.write_document("coverage.txt", render_list(summary, width, precision))

    return summary


def print_overall_rate(summary: Summary, fhandle: TextIO, *,
                       functions: bool = True, branches: bool = True,
                       title: str = "Summary coverage rate:",
                       precision: Optional[int] = None):
    """Print overall coverage rates for the specified coverage types."""
    total = summary.total
    print(title, file=fhandle)
    print("  lines......: " +
          get_overall_line(total.lines, "line", "lines", precision), file=fhandle)
    if functions:
        print("  functions..: " +
              get_overall_line(total.functions, "function", "functions", precision),
              file=fhandle)
    if branches:
        print("  branches...: " +
              get_overall_line(total.branches, "branch", "branches", precision),
              file=fhandle)


def get_overall_line(value: Rate, name_singular: str, name_plural: str,
                     precision: Optional[int] = None) -> str:
    """Return a string containing overall information for the specified
    found/hit data."""
    if value.found == 0:
        return "no data found"
    name = name_singular if value.found == 1 else name_plural
    return rate(value.hit, value.found, f"% ({value.hit} of {value.found} {name})",
                precision)


def check_rates(summary: Summary, fail_under_lines: float) -> bool:
    """Return True if line coverage meets FAIL_UNDER_LINES (percent)."""
    if fail_under_lines <= 0:
        return True
    lines = summary.total.lines
    if lines.found == 0:
        return False
    return lines.hit / lines.found >= fail_under_lines / 100
