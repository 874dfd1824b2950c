# Copyright Red Hat
#
# volmatch/assertions.py - Volume matcher test assertions
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Volume assertions for tests.

The ``match_*`` and ``have_*`` functions evaluate a volume and return a
``MatchResult`` without raising on a mismatch. ``VolumeAssertionsMixin``
wraps them as ``unittest.TestCase`` assertion methods::

    class TestWriter(VolumeAssertionsMixin, unittest.TestCase):
        def test_writes_config(self):
            volume = volume_from_json({"/etc": None})
            write_config(volume)
            self.assertVolumeMatches(volume, {"/etc/app.conf": "debug=1\\n"})
"""
from typing import Optional, Union
import inspect
import logging
import os

from pyfakefs.fake_filesystem import FakeFilesystem

from ._volmatch import (
    VOLMATCH_SUBSYSTEM_COMPARE,
    InvalidRuleError,
    InvalidSourceError,
    SnapshotError,
    UsageError,
)
from .engine import CompareResult, compare_maps, diff_payload_json, format_diff
from .entries import build_rules, match_entries
from .options import MatchOptions
from .snapshot import (
    UpdateState,
    get_update_state,
    has_snapshot,
    read_snapshot,
    write_snapshot,
)
from .volume import flatten, scan_volume_paths, volume_to_map

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_compare(msg, *args, **kwargs):
    """A wrapper for compare subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": VOLMATCH_SUBSYSTEM_COMPARE}, **kwargs)


#: Directory, beside the test module, holding relative snapshot paths.
SNAPSHOT_DIR_NAME = "__snapshots__"

#: The result of evaluating a volume assertion.
MatchResult = CompareResult


def _not_a_volume(received) -> MatchResult:
    return MatchResult(
        False,
        lambda: f"Expected {received!r} to be a volume (FakeFilesystem instance)",
        actual=repr(received),
        expected=FakeFilesystem.__name__,
    )


def _plural(count: int, one: str, many: str) -> str:
    return one if count == 1 else many


def match_volume(received, expected, **options) -> MatchResult:
    """
    Compare the volume ``received`` with ``expected``.

    :param received: The volume under test.
    :type received: ``FakeFilesystem``
    :param expected: A volume or JSON tree literal describing the expected
                     contents.
    :param options: ``MatchOptions`` fields: ``list_match``,
                    ``content_match``, ``report`` and ``prefix``.
    :returns: The comparison result.
    :rtype: ``MatchResult``
    :raises InvalidSourceError: If ``expected`` is not a volume or a JSON
                                tree literal.
    """
    match_options = MatchOptions.from_kwargs(**options)

    if not isinstance(received, FakeFilesystem):
        return _not_a_volume(received)

    if not isinstance(expected, (FakeFilesystem, dict)):
        raise InvalidSourceError(
            "You must provide a volume or a JSON tree to match_volume(), "
            f"not '{type(expected).__name__}'"
        )

    if received is expected:
        return MatchResult(True, lambda: "volumes matched by reference")

    include_content = match_options.compare_files
    received_map = volume_to_map(
        received, prefix=match_options.prefix, include_content=include_content
    )
    expected_map = flatten(
        expected, prefix=match_options.prefix, include_content=include_content
    )
    return compare_maps(received_map, expected_map, match_options)


def have_volume_entries(
    received, expected, prefix: Optional[str] = None, negate: bool = False
) -> MatchResult:
    """
    Check that the entries described by ``expected`` exist in ``received``.

    With ``negate=True`` the check passes only when none of the expected
    entries is found.

    :param received: The volume under test.
    :type received: ``FakeFilesystem``
    :param expected: A path or glob, a list of paths, globs and
                     ``{"path": ...}`` records, or a dictionary mapping
                     paths and globs to a type or a record.
    :param prefix: The directory that relative paths are resolved against.
    :type prefix: ``Optional[str]``
    :param negate: Assert that the expected entries are absent.
    :type negate: ``bool``
    :returns: The check result.
    :rtype: ``MatchResult``
    :raises InvalidRuleError: If ``expected`` is malformed.
    """
    if not isinstance(received, FakeFilesystem):
        return _not_a_volume(received)

    try:
        rules = build_rules(expected, prefix=prefix)
    except InvalidRuleError as err:
        raise InvalidRuleError(f"Invalid volume entries provided: {err}") from err

    result = match_entries(scan_volume_paths(received), rules)

    if negate:
        found = len(result.matches)
        if found:
            return MatchResult(
                False,
                lambda: (
                    "Expected volume entries not to satisfy the expected entries, "
                    f"but it did (found {found} {_plural(found, 'match', 'matches')})"
                ),
                actual={path: path_type.value for path, path_type in result.matches},
                expected={},
            )
        return MatchResult(True, lambda: "Volume entries did not satisfy the expected entries")

    if result.passed:
        return MatchResult(True, lambda: "Volume satisfied the expected entries")

    counts = []
    if result.missing_count:
        counts.append(
            f"{result.missing_count} missing "
            f"{_plural(result.missing_count, 'entry', 'entries')}"
        )
    if result.type_count:
        counts.append(
            f"{result.type_count} path type "
            f"{_plural(result.type_count, 'mismatch', 'mismatches')}"
        )

    return MatchResult(
        False,
        lambda: (
            "Volume entries did not satisfy the expected entries "
            f"(found {', '.join(counts)})"
        ),
        actual=result.diff["actual"],
        expected=result.diff["expected"],
    )


def _coerce_update_state(update_state) -> UpdateState:
    if update_state is None:
        return get_update_state()
    if isinstance(update_state, UpdateState):
        return update_state
    try:
        return UpdateState(update_state)
    except ValueError:
        raise UsageError(f"Invalid snapshot update state: '{update_state}'") from None


def match_volume_snapshot(
    received,
    snapshot_dir: Union[str, os.PathLike],
    *,
    update_state: Optional[Union[UpdateState, str]] = None,
    negate: bool = False,
    **options,
) -> MatchResult:
    """
    Compare the volume ``received`` with the snapshot at ``snapshot_dir``.

    The snapshot is written, and the check passes, when the update state
    is ``all`` or when no snapshot exists and the update state is ``new``.
    Otherwise the existing snapshot is read and compared.

    :param received: The volume under test.
    :type received: ``FakeFilesystem``
    :param snapshot_dir: The snapshot directory.
    :type snapshot_dir: ``Union[str, os.PathLike]``
    :param update_state: The snapshot update state. Defaults to the state
                         selected by the environment.
    :type update_state: ``Optional[Union[UpdateState, str]]``
    :param negate: Unsupported: raises ``UsageError`` if ``True``.
    :type negate: ``bool``
    :param options: ``MatchOptions`` fields.
    :returns: The comparison result.
    :rtype: ``MatchResult``
    :raises UsageError: If negated or ``snapshot_dir`` is empty.
    :raises SnapshotError: If no snapshot exists and the update state is
                           ``none``.
    """
    if negate:
        raise UsageError("match_volume_snapshot() cannot be used with negation")
    if not snapshot_dir:
        raise UsageError("match_volume_snapshot() requires a snapshot directory")

    match_options = MatchOptions.from_kwargs(**options)
    state = _coerce_update_state(update_state)

    if not isinstance(received, FakeFilesystem):
        return _not_a_volume(received)

    snapshot_path = os.fspath(snapshot_dir)
    exists = has_snapshot(snapshot_path)
    _log_debug_compare(
        "Snapshot %s (exists=%s, update_state=%s)", snapshot_path, exists, state.value
    )

    if state == UpdateState.ALL or (not exists and state == UpdateState.NEW):
        write_snapshot(
            volume_to_map(received, prefix=match_options.prefix),
            snapshot_path,
            clear=True,
        )
        return MatchResult(True, lambda: f"updated snapshot at {snapshot_path}")

    if not exists:
        raise SnapshotError(
            f"Snapshot {snapshot_path} does not exist and the snapshot "
            f"update state is '{state.value}'"
        )

    include_content = match_options.compare_files
    expected_map = read_snapshot(snapshot_path, include_content=include_content)
    received_map = volume_to_map(
        received, prefix=match_options.prefix, include_content=include_content
    )
    return compare_maps(received_map, expected_map, match_options)


def failure_message(result: MatchResult) -> str:
    """
    Return the one-line summary of ``result`` followed by its rendered
    diff.

    :param result: A failed match result.
    :type result: ``MatchResult``
    :rtype: ``str``
    """
    lines = [result.message()]
    diff = format_diff(result)
    if diff:
        lines.append(diff)
    elif result.actual is not None:
        lines.append("Received: " + diff_payload_json(result.actual))
    return "\n".join(lines)


class VolumeAssertionsMixin:
    """
    Volume assertion methods for ``unittest.TestCase`` subclasses.
    """

    def _volume_failure(self, standard_msg: str, msg: Optional[str]):
        # pylint: disable=no-member
        self.fail(self._formatMessage(msg, standard_msg))

    def assertVolumeMatches(self, received, expected, msg=None, **options):
        """
        Fail unless the volume ``received`` matches ``expected``.
        """
        result = match_volume(received, expected, **options)
        if not result.passed:
            self._volume_failure(failure_message(result), msg)

    def assertVolumeNotMatches(self, received, expected, msg=None, **options):
        """
        Fail if the volume ``received`` matches ``expected``.
        """
        result = match_volume(received, expected, **options)
        if result.passed:
            self._volume_failure(
                f"Expected volumes not to match, but {result.message()}", msg
            )

    def assertVolumeHasEntries(self, received, expected, prefix=None, msg=None):
        """
        Fail unless every entry described by ``expected`` exists in
        ``received``.
        """
        result = have_volume_entries(received, expected, prefix=prefix)
        if not result.passed:
            self._volume_failure(failure_message(result), msg)

    def assertVolumeNotHasEntries(self, received, expected, prefix=None, msg=None):
        """
        Fail if any entry described by ``expected`` exists in ``received``.
        """
        result = have_volume_entries(received, expected, prefix=prefix, negate=True)
        if not result.passed:
            self._volume_failure(failure_message(result), msg)

    def volumeSnapshotPath(self, snapshot_dir: Union[str, os.PathLike]) -> str:
        """
        Resolve ``snapshot_dir`` relative to the ``__snapshots__`` directory
        beside the module defining this test case.
        """
        snapshot_dir = os.fspath(snapshot_dir)
        if os.path.isabs(snapshot_dir):
            return snapshot_dir
        module_dir = os.path.dirname(os.path.abspath(inspect.getfile(type(self))))
        return os.path.join(module_dir, SNAPSHOT_DIR_NAME, snapshot_dir)

    def assertVolumeMatchesSnapshot(
        self, received, snapshot_dir, msg=None, update_state=None, **options
    ):
        """
        Fail unless the volume ``received`` matches the snapshot
        ``snapshot_dir``, writing the snapshot as the update state allows.
        """
        if not snapshot_dir:
            raise UsageError("assertVolumeMatchesSnapshot() requires a snapshot name")
        result = match_volume_snapshot(
            received,
            self.volumeSnapshotPath(snapshot_dir),
            update_state=update_state,
            **options,
        )
        if not result.passed:
            self._volume_failure(failure_message(result), msg)


__all__ = [
    "SNAPSHOT_DIR_NAME",
    "MatchResult",
    "match_volume",
    "have_volume_entries",
    "match_volume_snapshot",
    "failure_message",
    "VolumeAssertionsMixin",
]
