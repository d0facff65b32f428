# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
covagg

  This is a wrapper script which provides a single interface for capturing,
  combining, filtering, listing and reporting coverage data.

"""

from typing import List, Optional
import argparse
import sys
from pathlib import Path

from . import __version__
from . import util
from .__config__ import load_options
from .errors     import CoverageError
from .model      import CoverageModel
from .geninfo    import capture, zero_counters
from .aggregate  import merge_tracefiles, extract, remove
from .tracefile  import load, save, write_model
from .genreport  import summarize, generate_report, render_list, print_overall_rate
from .genreport  import check_rates, DirectorySink, StreamSink
from .util       import read_covagg_config_file, parse_rc_options, info, die

tool_name = Path(__file__).stem


def read_options(options: argparse.Namespace) -> dict:
    """Return the tracefile reader arguments selected by OPTIONS."""
    return dict(function_coverage=options.function_coverage,
                branch_coverage=options.branch_coverage)


def write_output(model: CoverageModel, args: argparse.Namespace,
                 options: argparse.Namespace):
    """Write MODEL to the output file, or to stdout if none is given."""
    test_name = getattr(args, "test_name", "") or ""
    if args.output_filename is None or args.output_filename == "-":
        write_model(sys.stdout, model, test_name, args.json,
                    checksum=options.checksum)
    else:
        save(model, Path(args.output_filename), test_name,
             checksum=options.checksum)


def cmd_capture(args: argparse.Namespace, options: argparse.Namespace) -> int:
    model = capture(args.directory,
                    initial=args.initial,
                    base_directory=args.base_directory,
                    include=args.include_patterns,
                    exclude=args.exclude_patterns,
                    external=args.external,
                    jobs=args.jobs if args.jobs is not None else options.jobs,
                    checksum=options.checksum,
                    **read_options(options))
    write_output(model, args, options)
    return 0


def cmd_merge(args: argparse.Namespace, options: argparse.Namespace) -> int:
    tracefile = merge_tracefiles(args.tracefile, args.test_name,
                                 **read_options(options))
    write_output(tracefile.merged, args, options)
    return 0


def cmd_extract(args: argparse.Namespace, options: argparse.Namespace) -> int:
    model = load(args.tracefile, **read_options(options))
    write_output(extract(model, args.patterns), args, options)
    return 0


def cmd_remove(args: argparse.Namespace, options: argparse.Namespace) -> int:
    model = load(args.tracefile, **read_options(options))
    write_output(remove(model, args.patterns), args, options)
    return 0


def cmd_list(args: argparse.Namespace, options: argparse.Namespace) -> int:
    summary = summarize(load(args.tracefile, **read_options(options)))
    sys.stdout.write(render_list(summary, options.list_width, options.precision))
    return 0


def cmd_summary(args: argparse.Namespace, options: argparse.Namespace) -> int:
    tracefile = merge_tracefiles(args.tracefile, **read_options(options))
    print_overall_rate(summarize(tracefile.merged), sys.stdout,
                       functions=options.function_coverage,
                       branches=options.branch_coverage,
                       precision=options.precision)
    return 0


def cmd_report(args: argparse.Namespace, options: argparse.Namespace) -> int:
    tracefile = merge_tracefiles(args.tracefile, **read_options(options))
    sink = (StreamSink(sys.stdout, summary=args.style == "json")
            if args.output_directory is None else
            DirectorySink(args.output_directory))
    summary = generate_report(tracefile.merged, sink,
                              style=args.style, title=args.title or "",
                              precision=options.precision,
                              width=options.list_width)
    print_overall_rate(summary, sys.stderr,
                       functions=options.function_coverage,
                       branches=options.branch_coverage,
                       title="Overall coverage rate:",
                       precision=options.precision)
    fail_under_lines = (args.fail_under_lines if args.fail_under_lines is not None
                        else options.fail_under_lines)
    if not check_rates(summary, fail_under_lines):
        info(f"Line coverage is below {fail_under_lines}%")
        return 1
    return 0


def cmd_zerocounters(args: argparse.Namespace, options: argparse.Namespace) -> int:
    zero_counters(args.directory)
    return 0


def add_output_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("-o", "--output-file", dest="output_filename", default=None,
                        help="Write data to FILENAME instead of stdout")
    parser.add_argument("--json", action="store_true",
                        help="Write data to stdout in JSON format instead of .info "
                             "(output files are written in the format of their suffix)")


def add_capture_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("-d", "--directory", action="append", required=True,
                        type=Path, help="Use .gcno/.gcda files in DIR")
    parser.add_argument("-b", "--base-directory", type=Path, default=None,
                        help="Use DIR as base directory for relative paths")
    parser.add_argument("-t", "--test-name", default="",
                        help="Specify test name to be stored with data")
    parser.add_argument("--include", dest="include_patterns", action="append",
                        default=[], metavar="PATTERN",
                        help="Include files matching PATTERN")
    parser.add_argument("--exclude", dest="exclude_patterns", action="append",
                        default=[], metavar="PATTERN",
                        help="Exclude files matching PATTERN")
    parser.add_argument("--no-external", dest="external", action="store_false",
                        help="Exclude data for files outside of DIR/BASE")
    parser.add_argument("-j", "--jobs", type=int, default=None,
                        help="Number of worker processes")
    add_output_arguments(parser)


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=tool_name,
                                     description="Capture, combine and report "
                                                 "gcov coverage data.")
    parser.add_argument("-v", "--version", action="version",
                        version=f"{tool_name}: covagg version {__version__}")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Do not print progress messages")
    parser.add_argument("--config-file", type=Path, default=None,
                        help="Specify configuration file location")
    parser.add_argument("--rc", action="append", default=[], metavar="SETTING=VALUE",
                        help="Override configuration file setting")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparser = subparsers.add_parser("capture", help="Capture coverage data")
    add_capture_arguments(subparser)
    subparser.add_argument("-i", "--initial", action="store_true",
                           help="Capture initial zero coverage data")
    subparser.set_defaults(func=cmd_capture)

    subparser = subparsers.add_parser("initial-capture",
                                      help="Capture initial zero coverage data")
    add_capture_arguments(subparser)
    subparser.set_defaults(func=cmd_capture, initial=True)

    subparser = subparsers.add_parser("merge", help="Combine tracefiles")
    subparser.add_argument("tracefile", nargs="+", type=Path)
    subparser.add_argument("-t", "--test-name", default="",
                           help="Specify test name to be stored with data")
    add_output_arguments(subparser)
    subparser.set_defaults(func=cmd_merge)

    for name, func, help in (("extract", cmd_extract, "Extract files matching PATTERN"),
                             ("remove",  cmd_remove,  "Remove files matching PATTERN")):
        subparser = subparsers.add_parser(name, help=help)
        subparser.add_argument("tracefile", type=Path)
        subparser.add_argument("patterns", nargs="+", metavar="PATTERN")
        add_output_arguments(subparser)
        subparser.set_defaults(func=func)

    subparser = subparsers.add_parser("list", help="List contents of tracefile")
    subparser.add_argument("tracefile", type=Path)
    subparser.set_defaults(func=cmd_list)

    subparser = subparsers.add_parser("summary", help="Show summary coverage data")
    subparser.add_argument("tracefile", nargs="+", type=Path)
    subparser.set_defaults(func=cmd_summary)

    subparser = subparsers.add_parser("report", help="Generate a coverage report")
    subparser.add_argument("tracefile", nargs="+", type=Path)
    subparser.add_argument("-o", "--output-directory", type=Path, default=None,
                           help="Write report files to OUTDIR instead of stdout")
    subparser.add_argument("-s", "--style", choices=("html", "text", "json"),
                           default="html", help="Rendering of the report")
    subparser.add_argument("-t", "--title", default=None,
                           help="Display TITLE in the report")
    subparser.add_argument("--fail-under-lines", type=float, default=None,
                           metavar="PERCENTAGE",
                           help="Fail if line coverage is below PERCENTAGE")
    subparser.set_defaults(func=cmd_report)

    subparser = subparsers.add_parser("zerocounters",
                                      help="Reset all execution counts to zero")
    subparser.add_argument("-d", "--directory", action="append", required=True,
                           type=Path, help="Delete .gcda files in DIR")
    subparser.set_defaults(func=cmd_zerocounters)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    util.quiet = args.quiet
    config  = read_covagg_config_file(args.config_file)
    options = load_options(config, parse_rc_options(args.rc))

    try:
        return args.func(args, options)
    except (CoverageError, OSError) as exc:
        die(f"{tool_name}: ERROR: {exc}")


if __name__.rpartition(".")[-1] == "__main__":
    sys.exit(main())
