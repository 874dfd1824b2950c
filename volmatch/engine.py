# Copyright Red Hat
#
# volmatch/engine.py - Volume matcher comparison engine
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Comparison of flattened volumes.

Compares two ``VolumeMap`` objects according to a ``MatchOptions``
policy and reports either the first mismatch found or every mismatch
between the two trees.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from hashlib import sha1
from enum import Enum
import difflib
import base64
import json
import logging

from ._volmatch import VOLMATCH_SUBSYSTEM_COMPARE
from .filetypes import is_textual
from .options import ListMatch, MatchOptions, ReportMode
from .volume import EntryKind, VolumeEntry, VolumeMap

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_compare(msg, *args, **kwargs):
    """A wrapper for compare subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": VOLMATCH_SUBSYSTEM_COMPARE}, **kwargs)


#: Number of bytes shown from each end of a binary file preview.
PREVIEW_TRIM = 32

#: Message returned for a passing comparison.
MATCHED_MESSAGE = "volumes matched"


#
# Diff entries: presentation-only projections of volume entries.
#


@dataclass(frozen=True)
class MatchedDiff:
    """
    Placeholder for a path that matched in a full report.
    """

    def to_dict(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class DirectoryDiff:
    """
    An empty directory.
    """

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "dir"}


@dataclass(frozen=True)
class FileDiff:
    """
    A text file shown verbatim, or a content-less file marker when file
    content is not compared.
    """

    data: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {"type": "file"}
        if self.data is not None:
            out["data"] = self.data
        return out


@dataclass(frozen=True)
class BinaryFileDiff:
    """
    A binary file summarised by its SHA1 digest, length and a base64
    preview of its first and last bytes.
    """

    hash: str
    length: int
    preview: str

    @classmethod
    def from_bytes(cls, data: bytes, trim: int = PREVIEW_TRIM) -> "BinaryFileDiff":
        """
        Build a binary file summary for ``data``.

        :param data: The file content.
        :type data: ``bytes``
        :param trim: Number of bytes to preview from each end of ``data``.
        :type trim: ``int``
        :returns: A new ``BinaryFileDiff``.
        :rtype: ``BinaryFileDiff``
        """
        head = base64.b64encode(data[:trim]).decode("ascii")
        if len(data) > trim:
            tail = base64.b64encode(data[-trim:]).decode("ascii")
            preview = f"{head}...{tail}"
        else:
            preview = head
        return cls(sha1(data).hexdigest(), len(data), preview)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "binary-file",
            "hash": self.hash,
            "length": self.length,
            "preview": self.preview,
        }


@dataclass(frozen=True)
class SymlinkDiff:
    """
    A symbolic link target, or a target-less marker when symlink targets
    are not compared.
    """

    target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {"type": "symlink"}
        if self.target is not None:
            out["target"] = self.target
        return out


DiffEntry = Union[MatchedDiff, DirectoryDiff, FileDiff, BinaryFileDiff, SymlinkDiff]

EMPTY_DIR_MARKER = DirectoryDiff()
EMPTY_FILE_MARKER = FileDiff()
EMPTY_SYMLINK_MARKER = SymlinkDiff()
MATCHED_MARKER = MatchedDiff()


class DiffKind(Enum):
    """
    Outcome of comparing a single path.
    """

    MATCH = "match"
    TYPE_MISMATCH = "type-mismatch"
    FILE_MISMATCH = "file-mismatch"
    SYMLINK_MISMATCH = "symlink-mismatch"
    MISSING = "missing"
    EXTRA = "extra"


@dataclass
class CompareResult:
    """
    The result of comparing two volumes.

    ``message`` is a callable so that the summary is only built when it is
    needed. For a first-mismatch report ``actual`` and ``expected`` are the
    sorted path lists (for a path list mismatch) or the two ``DiffEntry``
    objects for the mismatching path. For a full report they map every
    visited path to a ``DiffEntry``.
    """

    passed: bool
    message: Callable[[], str]
    actual: Any = None
    expected: Any = None
    #: Per-category mismatch counts (full reports only)
    counts: Dict[str, int] = field(default_factory=dict)
    #: The list match policy that failed (path list mismatches only)
    reason: Optional[str] = None
    #: The first mismatching path (first-mismatch reports only)
    path: Optional[str] = None

    def __bool__(self):
        return self.passed


def _passed() -> CompareResult:
    return CompareResult(True, lambda: MATCHED_MESSAGE)


def _plural(count: int, suffix: str = "s") -> str:
    return suffix if count > 1 else ""


class _EntryMatcher:
    """
    Classify per-path outcomes under a content match policy.
    """

    def __init__(self, options: MatchOptions):
        self.compare_files = options.compare_files
        self.compare_symlinks = options.compare_symlinks
        self.use_magic = options.use_magic_file_type

    def make_diff(self, path: str, entry: VolumeEntry) -> DiffEntry:
        """
        Project ``entry`` at ``path`` into a ``DiffEntry``.
        """
        if entry.kind == EntryKind.EMPTY_DIR:
            return EMPTY_DIR_MARKER
        if entry.kind == EntryKind.FILE:
            if not self.compare_files:
                return EMPTY_FILE_MARKER
            if is_textual(path, entry.data, use_magic=self.use_magic):
                return FileDiff(entry.data.decode("utf-8", errors="replace"))
            return BinaryFileDiff.from_bytes(entry.data)
        if not self.compare_symlinks:
            return EMPTY_SYMLINK_MARKER
        return SymlinkDiff(entry.target)

    def match(
        self,
        path: str,
        exp: Optional[VolumeEntry],
        act: Optional[VolumeEntry],
    ) -> Tuple[DiffKind, Optional[DiffEntry], Optional[DiffEntry]]:
        """
        Compare the expected and received entries for ``path``.

        :returns: A ``(kind, expected_diff, actual_diff)`` tuple. Diff
                  entries are ``None`` for a side that was not rendered.
        :rtype: ``Tuple[DiffKind, Optional[DiffEntry], Optional[DiffEntry]]``
        """
        if exp is not None and act is None:
            return DiffKind.MISSING, self.make_diff(path, exp), None
        if act is not None and exp is None:
            return DiffKind.EXTRA, None, self.make_diff(path, act)

        if exp.kind != act.kind:
            kind = DiffKind.TYPE_MISMATCH
        elif exp.kind == EntryKind.FILE and self.compare_files and exp.data != act.data:
            kind = DiffKind.FILE_MISMATCH
        elif (
            exp.kind == EntryKind.SYMLINK
            and self.compare_symlinks
            and exp.target != act.target
        ):
            kind = DiffKind.SYMLINK_MISMATCH
        else:
            return DiffKind.MATCH, None, None

        return kind, self.make_diff(path, exp), self.make_diff(path, act)


_FIRST_MESSAGES = {
    DiffKind.TYPE_MISMATCH: "Found path type mismatch at `{path}`",
    DiffKind.FILE_MISMATCH: "Found file content mismatch at `{path}`",
    DiffKind.SYMLINK_MISMATCH: "Found symlink target mismatch at `{path}`",
}


def _list_mismatch(
    received: VolumeMap,
    expected: VolumeMap,
    list_match: ListMatch,
    actual_paths: List[str],
    expected_paths: List[str],
) -> Optional[CompareResult]:
    """
    Check the path lists of ``received`` and ``expected`` under
    ``list_match``.

    :returns: A failed ``CompareResult`` or ``None`` if the lists agree.
    :rtype: ``Optional[CompareResult]``
    """
    if list_match == ListMatch.IGNORE_EXTRA:
        missing = [p for p in expected_paths if p not in received]
        if not missing:
            return None
        reason = f"Volume is missing {len(missing)} expected file{_plural(len(missing))}"
        actual_paths = [p for p in actual_paths if p in expected]
    elif list_match == ListMatch.IGNORE_MISSING:
        extra = [p for p in actual_paths if p not in expected]
        if not extra:
            return None
        reason = f"Volume has {len(extra)} unexpected file{_plural(len(extra))}"
        expected_paths = [p for p in expected_paths if p in received]
    else:
        if set(actual_paths) == set(expected_paths):
            return None
        reason = "Directory structure didn't match"

    _log_debug_compare("Path list mismatch (%s): %s", list_match.value, reason)
    return CompareResult(
        False,
        lambda: reason,
        actual=actual_paths,
        expected=expected_paths,
        reason=list_match.value,
    )


def compare_maps_first(
    received: VolumeMap, expected: VolumeMap, options: MatchOptions
) -> CompareResult:
    """
    Compare two volume maps, stopping at the first mismatch.

    Path lists are checked first. Paths are then visited in sorted order
    of the authoritative side: the received volume for ``ignore-missing``
    and the expected volume otherwise.

    :param received: The volume under test.
    :type received: ``VolumeMap``
    :param expected: The reference volume.
    :type expected: ``VolumeMap``
    :param options: The comparison policy.
    :type options: ``MatchOptions``
    :returns: The comparison result.
    :rtype: ``CompareResult``
    """
    actual_paths = sorted(received)
    expected_paths = sorted(expected)

    result = _list_mismatch(
        received, expected, options.list_match, actual_paths, expected_paths
    )
    if result is not None:
        return result

    matcher = _EntryMatcher(options)
    if options.list_match == ListMatch.IGNORE_MISSING:
        to_check = actual_paths
    else:
        to_check = expected_paths

    for path in to_check:
        kind, exp, act = matcher.match(path, expected[path], received[path])
        if kind in _FIRST_MESSAGES:
            message = _FIRST_MESSAGES[kind].format(path=path)
            _log_debug_compare("%s", message)
            return CompareResult(
                False, lambda m=message: m, actual=act, expected=exp, path=path
            )

    _log_debug_compare("Compared %d paths: no mismatches", len(to_check))
    return _passed()


def compare_maps_all(
    received: VolumeMap, expected: VolumeMap, options: MatchOptions
) -> CompareResult:
    """
    Compare two volume maps, collecting every mismatch.

    Matched paths are recorded in both diffs as ``MatchedDiff``
    placeholders so that the full set of visited paths is visible.

    :param received: The volume under test.
    :type received: ``VolumeMap``
    :param expected: The reference volume.
    :type expected: ``VolumeMap``
    :param options: The comparison policy.
    :type options: ``MatchOptions``
    :returns: The comparison result.
    :rtype: ``CompareResult``
    """
    ignore_missing = options.list_match == ListMatch.IGNORE_MISSING
    ignore_extra = options.list_match == ListMatch.IGNORE_EXTRA
    matcher = _EntryMatcher(options)

    actual_diff: Dict[str, DiffEntry] = {}
    expected_diff: Dict[str, DiffEntry] = {}
    counts = {"missing": 0, "extra": 0, "type": 0, "content": 0}

    if ignore_extra:
        to_check = sorted(expected)
    elif ignore_missing:
        to_check = sorted(received)
    else:
        to_check = sorted(set(received) | set(expected))

    for path in to_check:
        kind, exp, act = matcher.match(path, expected.get(path), received.get(path))
        if kind == DiffKind.TYPE_MISMATCH:
            expected_diff[path] = exp
            actual_diff[path] = act
            counts["type"] += 1
        elif kind in (DiffKind.FILE_MISMATCH, DiffKind.SYMLINK_MISMATCH):
            expected_diff[path] = exp
            actual_diff[path] = act
            counts["content"] += 1
        elif kind == DiffKind.MISSING:
            if not ignore_missing:
                expected_diff[path] = exp
                counts["missing"] += 1
        elif kind == DiffKind.EXTRA:
            if not ignore_extra:
                actual_diff[path] = act
                counts["extra"] += 1
        else:
            actual_diff[path] = MATCHED_MARKER
            expected_diff[path] = MATCHED_MARKER

    total = sum(counts.values())
    _log_debug_compare("Compared %d paths: %d mismatches %s", len(to_check), total, counts)
    if not total:
        return _passed()

    parts = []
    if counts["missing"]:
        parts.append(f"{counts['missing']} missing path{_plural(counts['missing'])}")
    if counts["extra"]:
        parts.append(f"{counts['extra']} unexpected path{_plural(counts['extra'])}")
    if counts["type"]:
        parts.append(f"{counts['type']} path type mismatch{_plural(counts['type'], 'es')}")
    if counts["content"]:
        parts.append(f"{counts['content']} mismatched content")

    if len(parts) == 1:
        message = f"Found {parts[0]}"
    else:
        message = f"Found {total} mismatches: {', '.join(parts)}"

    return CompareResult(
        False,
        lambda: message,
        actual=actual_diff,
        expected=expected_diff,
        counts=counts,
    )


def compare_maps(
    received: VolumeMap, expected: VolumeMap, options: Optional[MatchOptions] = None
) -> CompareResult:
    """
    Compare two volume maps according to ``options``.

    :param received: The volume under test.
    :type received: ``VolumeMap``
    :param expected: The reference volume.
    :type expected: ``VolumeMap``
    :param options: The comparison policy. Defaults to an exact match of
                    paths and content, reporting the first mismatch.
    :type options: ``Optional[MatchOptions]``
    :returns: The comparison result.
    :rtype: ``CompareResult``
    """
    options = options or MatchOptions()
    _log_debug_compare(
        "Comparing %d received paths with %d expected paths (%s)",
        len(received),
        len(expected),
        ", ".join(str(options).splitlines()),
    )
    if options.report == ReportMode.ALL:
        return compare_maps_all(received, expected, options)
    return compare_maps_first(received, expected, options)


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {key: _to_jsonable(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(val) for val in value]
    return value


def diff_payload_json(value: Any, pretty: bool = True) -> str:
    """
    Return a JSON representation of a result's ``actual`` or ``expected``
    payload.

    :param value: The payload to encode.
    :param pretty: Indent JSON to be human readable.
    :type pretty: ``bool``
    :returns: A JSON string.
    :rtype: ``str``
    """
    return json.dumps(
        _to_jsonable(value), indent=2 if pretty else None, sort_keys=True
    )


def format_diff(result: CompareResult) -> str:
    """
    Render the ``expected`` and ``actual`` payloads of ``result`` as a
    unified diff of their JSON representations.

    :param result: The comparison result to render.
    :type result: ``CompareResult``
    :returns: The rendered diff, or an empty string for a passing result.
    :rtype: ``str``
    """
    if result.passed or (result.actual is None and result.expected is None):
        return ""
    expected_lines = diff_payload_json(result.expected).splitlines()
    actual_lines = diff_payload_json(result.actual).splitlines()
    return "\n".join(
        difflib.unified_diff(
            expected_lines,
            actual_lines,
            fromfile="expected",
            tofile="received",
            lineterm="",
        )
    )


__all__ = [
    "PREVIEW_TRIM",
    "MATCHED_MESSAGE",
    "MatchedDiff",
    "DirectoryDiff",
    "FileDiff",
    "BinaryFileDiff",
    "SymlinkDiff",
    "DiffEntry",
    "DiffKind",
    "CompareResult",
    "compare_maps",
    "compare_maps_first",
    "compare_maps_all",
    "diff_payload_json",
    "format_diff",
]
