# Copyright Red Hat
#
# volmatch/command.py - Volume matcher command interface
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
"""The ``volmatch.command`` module provides the volmatch command line
interface, and a simple procedural interface to the ``volmatch`` library
modules for comparing, checking and snapshotting real directory trees.
"""
from argparse import ArgumentParser
from os.path import basename
from json import dumps, loads
import logging
import sys

from volmatch import (
    VOLMATCH_SUBSYSTEM_COMMAND,
    InvalidSourceError,
    SnapshotError,
    SubsystemFilter,
    VolmatchError,
    parse_debug_options,
    set_debug_mask,
    setup_debug_from_env,
    __version__,
)
from .engine import CompareResult, compare_maps, diff_payload_json, format_diff
from .entries import build_rules, match_entries
from .options import ContentMatch, ListMatch, MatchOptions, ReportMode
from .snapshot import has_snapshot, read_snapshot, write_snapshot
from .volume import (
    SourceKind,
    dir_to_map,
    flatten,
    scan_volume_paths,
    source_kind,
    volume_from_map,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_command(msg, *args, **kwargs):
    """A wrapper for command subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": VOLMATCH_SUBSYSTEM_COMMAND}, **kwargs)


_DEFAULT_LOG_LEVEL = logging.WARNING
_CONSOLE_HANDLER = None

DIFF_CMD = "diff"
ENTRIES_CMD = "entries"
SNAPSHOT_TYPE = "snapshot"
WRITE_CMD = "write"
CHECK_CMD = "check"


def compare_dirs(received, expected, options):
    """
    Compare two real directory trees.

    :param received: The directory under test.
    :param expected: The reference directory.
    :param options: The comparison policy.
    :type options: ``MatchOptions``
    :returns: The comparison result.
    :rtype: ``CompareResult``
    """
    include_content = options.compare_files
    received_map = flatten(received, prefix=options.prefix, include_content=include_content)
    expected_map = flatten(expected, prefix=options.prefix, include_content=include_content)
    return compare_maps(received_map, expected_map, options)


def check_dir_entries(root, rules, prefix=None):
    """
    Check existence rules against a real directory tree.

    :param root: The directory to check.
    :param rules: Paths, globs or rule records.
    :param prefix: The directory that relative rules are resolved against.
    :returns: The existence check result.
    :rtype: ``EntriesMatch``
    :raises InvalidSourceError: If ``root`` is not a directory.
    """
    match_rules = build_rules(rules, prefix=prefix)
    if source_kind(root) != SourceKind.DIRECTORY:
        raise InvalidSourceError(f"Expected a directory path, got {root!r}")
    volume = volume_from_map(dir_to_map(root, include_content=False))
    return match_entries(scan_volume_paths(volume), match_rules)


def print_result(result: CompareResult, as_json=False):
    """
    Print a comparison result, as text or as JSON.

    :param result: The result to print.
    :type result: ``CompareResult``
    :param as_json: Print the result as JSON.
    :type as_json: ``bool``
    """
    if as_json:
        out = {
            "passed": result.passed,
            "message": result.message(),
            "actual": None,
            "expected": None,
        }
        if not result.passed:
            out["actual"] = loads(diff_payload_json(result.actual))
            out["expected"] = loads(diff_payload_json(result.expected))
        print(dumps(out, indent=4))
        return
    print(result.message())
    if not result.passed:
        diff = format_diff(result)
        if diff:
            print(diff)


def _diff_cmd(cmd_args):
    """
    Diff directories command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    options = MatchOptions.from_cmd_args(cmd_args)
    result = compare_dirs(cmd_args.received, cmd_args.expected, options)
    print_result(result, as_json=cmd_args.json)
    return 0 if result.passed else 1


def _entries_cmd(cmd_args):
    """
    Check directory entries command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    result = check_dir_entries(cmd_args.root, cmd_args.rules, prefix=cmd_args.prefix)
    if cmd_args.negate:
        found = len(result.matches)
        for path, path_type in result.matches:
            print(f"{path} ({path_type.value})")
        if found:
            print(f"Found {found} unexpected entr{'ies' if found > 1 else 'y'}")
            return 1
        return 0

    if result.passed:
        print(f"All entries found ({len(result.matches)} matched)")
        return 0

    for identifier, actual in result.diff["actual"].items():
        expected = result.diff["expected"][identifier]
        print(f"{identifier}: expected {dumps(expected)}, got {dumps(actual)}")
    print(
        f"Missing entries: {result.missing_count}, "
        f"type mismatches: {result.type_count}"
    )
    return 1


def _snapshot_write_cmd(cmd_args):
    """
    Write snapshot command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    volume_map = flatten(cmd_args.source, prefix=cmd_args.prefix)
    write_snapshot(volume_map, cmd_args.snapshot_dir, clear=True)
    print(f"Wrote snapshot with {len(volume_map)} entries to {cmd_args.snapshot_dir}")
    return 0


def _snapshot_check_cmd(cmd_args):
    """
    Check snapshot command handler.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    if not has_snapshot(cmd_args.snapshot_dir):
        raise SnapshotError(f"Snapshot {cmd_args.snapshot_dir} does not exist")
    options = MatchOptions.from_cmd_args(cmd_args)
    include_content = options.compare_files
    expected_map = read_snapshot(cmd_args.snapshot_dir, include_content=include_content)
    received_map = flatten(
        cmd_args.source, prefix=options.prefix, include_content=include_content
    )
    result = compare_maps(received_map, expected_map, options)
    print_result(result, as_json=cmd_args.json)
    return 0 if result.passed else 1


def setup_logging(cmd_args):
    """
    Set up volmatch logging.
    """
    # pylint: disable=global-statement
    global _CONSOLE_HANDLER
    level = _DEFAULT_LOG_LEVEL
    if cmd_args.verbose and cmd_args.verbose > 1:
        level = logging.DEBUG
    elif cmd_args.verbose and cmd_args.verbose > 0:
        level = logging.INFO

    volmatch_log = logging.getLogger("volmatch")
    formatter = logging.Formatter("%(levelname)s - %(message)s")
    volmatch_log.setLevel(level)
    if volmatch_log.hasHandlers():
        volmatch_log.handlers.clear()

    # Subsystem log filtering
    _volmatch_subsystem_filter = SubsystemFilter("volmatch")

    _CONSOLE_HANDLER = logging.StreamHandler()
    _CONSOLE_HANDLER.setLevel(level)
    _CONSOLE_HANDLER.setFormatter(formatter)
    _CONSOLE_HANDLER.addFilter(_volmatch_subsystem_filter)

    volmatch_log.addHandler(_CONSOLE_HANDLER)


def shutdown_logging():
    """
    Shut down volmatch logging.
    """
    logging.shutdown()


def set_debug(debug_arg):
    """
    Set debugging mask from command line argument, or from the
    environment if no argument was given.
    """
    if not debug_arg:
        setup_debug_from_env()
        return

    set_debug_mask(parse_debug_options(debug_arg))


def _add_match_args(parser):
    """
    Add volume comparison policy arguments.
    """
    parser.add_argument(
        "-l",
        "--list-match",
        dest="list_match",
        choices=[m.value for m in ListMatch],
        default=ListMatch.EXACT.value,
        help="How the sets of paths must correspond",
    )
    parser.add_argument(
        "-c",
        "--content-match",
        dest="content_match",
        choices=[m.value for m in ContentMatch],
        default=ContentMatch.ALL.value,
        help="Which file contents and symlink targets to compare",
    )
    parser.add_argument(
        "-r",
        "--report",
        choices=[m.value for m in ReportMode],
        default=ReportMode.FIRST.value,
        help="Stop at the first mismatch or report all mismatches",
    )
    parser.add_argument(
        "-f",
        "--file-types",
        dest="use_magic_file_type",
        action="store_true",
        help="Classify file content using libmagic when rendering differences",
    )
    _add_prefix_arg(parser, "Only compare the subtree rooted at PREFIX")
    _add_json_arg(parser)


def _add_prefix_arg(parser, help_text):
    parser.add_argument(
        "-p",
        "--prefix",
        metavar="PREFIX",
        type=str,
        default=None,
        help=help_text,
    )


def _add_json_arg(parser):
    """
    Add the --json argument.
    """
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output the result as JSON",
    )


def _add_snapshot_subparser(type_subparser):
    """
    Add subparser for 'snapshot' commands.

    :param type_subparser: Command type subparser
    """
    snapshot_parser = type_subparser.add_parser(SNAPSHOT_TYPE, help="Snapshot commands")
    snapshot_subparser = snapshot_parser.add_subparsers(dest="command")

    # snapshot write subcommand
    snapshot_write_parser = snapshot_subparser.add_parser(
        WRITE_CMD, help="Write a directory tree to a snapshot directory"
    )
    snapshot_write_parser.add_argument(
        "source", metavar="SOURCE", help="The directory to snapshot"
    )
    snapshot_write_parser.add_argument(
        "snapshot_dir", metavar="SNAPSHOT_DIR", help="The snapshot directory"
    )
    _add_prefix_arg(snapshot_write_parser, "Only snapshot the subtree rooted at PREFIX")
    snapshot_write_parser.set_defaults(func=_snapshot_write_cmd)

    # snapshot check subcommand
    snapshot_check_parser = snapshot_subparser.add_parser(
        CHECK_CMD, help="Compare a directory tree with a snapshot directory"
    )
    snapshot_check_parser.add_argument(
        "source", metavar="SOURCE", help="The directory to check"
    )
    snapshot_check_parser.add_argument(
        "snapshot_dir", metavar="SNAPSHOT_DIR", help="The snapshot directory"
    )
    _add_match_args(snapshot_check_parser)
    snapshot_check_parser.set_defaults(func=_snapshot_check_cmd)


def main(args):
    """
    Main entry point for volmatch.
    """
    parser = ArgumentParser(description="Volume Matcher", prog=basename(args[0]))

    # Global arguments
    parser.add_argument(
        "-d",
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="A list of debug options to enable",
    )
    parser.add_argument("-v", "--verbose", help="Enable verbose output", action="count")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        help="Report the version number of volmatch",
        version=__version__,
    )
    type_subparser = parser.add_subparsers(dest="type", help="Command type")

    # diff command
    diff_parser = type_subparser.add_parser(DIFF_CMD, help="Compare two directories")
    diff_parser.add_argument(
        "received", metavar="RECEIVED", help="The directory under test"
    )
    diff_parser.add_argument(
        "expected", metavar="EXPECTED", help="The reference directory"
    )
    _add_match_args(diff_parser)
    diff_parser.set_defaults(func=_diff_cmd)

    # entries command
    entries_parser = type_subparser.add_parser(
        ENTRIES_CMD, help="Check that paths exist in a directory"
    )
    entries_parser.add_argument("root", metavar="ROOT", help="The directory to check")
    entries_parser.add_argument(
        "rules",
        metavar="RULE",
        nargs="+",
        help="A path or glob pattern that must exist",
    )
    _add_prefix_arg(entries_parser, "Resolve relative rules against PREFIX")
    entries_parser.add_argument(
        "-n",
        "--not",
        dest="negate",
        action="store_true",
        help="Check that none of the rules match",
    )
    entries_parser.set_defaults(func=_entries_cmd)

    _add_snapshot_subparser(type_subparser)

    cmd_args = parser.parse_args(args[1:])

    status = 1

    try:
        set_debug(cmd_args.debug)
    except ValueError as err:
        print(err)
        parser.print_help()
        return status

    setup_logging(cmd_args)

    _log_debug_command("Parsed %s", " ".join(args[1:]))

    if "func" not in cmd_args:
        parser.print_help()
        return status

    if cmd_args.debug:
        status = cmd_args.func(cmd_args)
    else:
        try:
            status = cmd_args.func(cmd_args)
        except KeyboardInterrupt:  # pragma: no cover
            _log_info("Exiting on user cancel")
        except (VolmatchError, OSError) as err:
            _log_error("Command failed: %s", err)

    shutdown_logging()
    return status


def run():
    """
    Console script entry point.
    """
    sys.exit(main(sys.argv))


# vim: set et ts=4 sw=4 :
