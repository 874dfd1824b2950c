# Copyright Red Hat
#
# volmatch/snapshot.py - Volume matcher snapshot persistence
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Snapshot persistence.

A snapshot is a real directory tree that mirrors a volume: regular files
with the same bytes, symbolic links with the same targets and empty
directories for empty volume directories. There is no metadata file.
"""
from typing import Optional, Union
from enum import Enum
import logging
import shutil
import os

from ._volmatch import (
    VOLMATCH_SUBSYSTEM_SNAPSHOT,
    ENV_UPDATE_SNAPSHOTS,
    UsageError,
)
from .volume import (
    MAX_IO_WORKERS,
    EntryKind,
    VolumeMap,
    dir_to_map,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_snapshot(msg, *args, **kwargs):
    """A wrapper for snapshot subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": VOLMATCH_SUBSYSTEM_SNAPSHOT}, **kwargs)


class UpdateState(Enum):
    """
    Snapshot update policy.
    """

    #: Never write snapshots: a missing snapshot is a failure
    NONE = "none"
    #: Write snapshots that do not exist yet
    NEW = "new"
    #: Rewrite every snapshot
    ALL = "all"


def _env_flag(value: Optional[str]) -> bool:
    return bool(value) and value.lower() not in ("0", "false", "no")


def get_update_state() -> UpdateState:
    """
    Return the snapshot update state selected by the environment.

    ``VOLMATCH_UPDATE_SNAPSHOTS`` selects ``none``, ``new`` or ``all``.
    When it is unset the state is ``new``, or ``none`` if running under
    CI (the ``CI`` environment variable is set).

    :returns: The snapshot update state.
    :rtype: ``UpdateState``
    :raises UsageError: If ``VOLMATCH_UPDATE_SNAPSHOTS`` is invalid.
    """
    value = os.environ.get(ENV_UPDATE_SNAPSHOTS)
    if value:
        try:
            return UpdateState(value.strip().lower())
        except ValueError:
            raise UsageError(
                f"Invalid {ENV_UPDATE_SNAPSHOTS} value '{value}': "
                "expected one of 'none', 'new', 'all'"
            ) from None
    if _env_flag(os.environ.get("CI")):
        return UpdateState.NONE
    return UpdateState.NEW


def has_snapshot(dir_path: Union[str, os.PathLike]) -> bool:
    """
    Return ``True`` if a snapshot exists at ``dir_path``.

    :param dir_path: The snapshot directory.
    :type dir_path: ``Union[str, os.PathLike]``
    :rtype: ``bool``
    """
    return os.path.isdir(dir_path)


def read_snapshot(
    dir_path: Union[str, os.PathLike],
    include_content: bool = True,
    max_workers: int = MAX_IO_WORKERS,
) -> VolumeMap:
    """
    Read the snapshot at ``dir_path`` into a ``VolumeMap``.

    :param dir_path: The snapshot directory.
    :type dir_path: ``Union[str, os.PathLike]``
    :param include_content: Read file content.
    :type include_content: ``bool``
    :param max_workers: Maximum number of concurrent reads.
    :type max_workers: ``int``
    :returns: The snapshot contents.
    :rtype: ``VolumeMap``
    :raises FileNotFoundError: If the snapshot does not exist.
    """
    if not has_snapshot(dir_path):
        raise FileNotFoundError(f"Snapshot directory not found: {os.fspath(dir_path)}")
    _log_debug_snapshot("Reading snapshot from %s", os.fspath(dir_path))
    return dir_to_map(dir_path, include_content=include_content, max_workers=max_workers)


def write_snapshot(
    volume_map: VolumeMap, dir_path: Union[str, os.PathLike], clear: bool = False
):
    """
    Write ``volume_map`` to a snapshot directory at ``dir_path``.

    :param volume_map: The flattened volume to persist.
    :type volume_map: ``VolumeMap``
    :param dir_path: The snapshot directory.
    :type dir_path: ``Union[str, os.PathLike]``
    :param clear: Remove any existing snapshot at ``dir_path`` first.
    :type clear: ``bool``
    """
    base = os.fspath(dir_path)
    for path, entry in volume_map.items():
        if not path.startswith("/"):
            raise ValueError(f"Volume map path is not absolute: '{path}'")
        if not isinstance(getattr(entry, "kind", None), EntryKind):
            raise ValueError(f"Unknown volume entry for '{path}': {entry!r}")

    if clear and os.path.lexists(base):
        _log_debug_snapshot("Removing existing snapshot at %s", base)
        shutil.rmtree(base)

    os.makedirs(base, exist_ok=True)
    for path, entry in volume_map.items():
        target = os.path.join(base, *path.lstrip("/").split("/"))
        if entry.kind == EntryKind.EMPTY_DIR:
            os.makedirs(target, exist_ok=True)
            continue
        os.makedirs(os.path.dirname(target), exist_ok=True)
        if entry.kind == EntryKind.FILE:
            with open(target, "wb") as fp:
                fp.write(entry.data)
        else:
            os.symlink(entry.target, target)

    _log_info("Wrote snapshot with %d entries to %s", len(volume_map), base)


__all__ = [
    "UpdateState",
    "get_update_state",
    "has_snapshot",
    "read_snapshot",
    "write_snapshot",
]
