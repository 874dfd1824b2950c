# Copyright Red Hat
#
# volmatch/volume.py - Volume matcher tree flattening
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Volume entry model and tree flattening.

A volume is a ``pyfakefs`` ``FakeFilesystem``. Volumes, JSON tree
literals and real directories are all flattened into the same canonical
``VolumeMap``: a dictionary mapping absolute POSIX paths to typed
entries. Non-empty directories are implied by their children and are
never recorded.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Tuple, Union
from enum import Enum
import posixpath
import logging
import stat
import os

from pyfakefs.fake_filesystem import FakeFilesystem

from ._volmatch import VOLMATCH_SUBSYSTEM_VOLUME, InvalidSourceError

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_volume(msg, *args, **kwargs):
    """A wrapper for volume subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": VOLMATCH_SUBSYSTEM_VOLUME}, **kwargs)


#: Maximum number of concurrent reads when flattening a real directory.
MAX_IO_WORKERS = 16


class EntryKind(Enum):
    """
    Kinds of entry recorded in a ``VolumeMap``.
    """

    FILE = "file"
    SYMLINK = "symlink"
    EMPTY_DIR = "empty-dir"


@dataclass(frozen=True)
class FileEntry:
    """
    A regular file and its content.
    """

    kind: ClassVar[EntryKind] = EntryKind.FILE

    data: bytes = b""

    @property
    def type_name(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class SymlinkEntry:
    """
    A symbolic link and its literal, unresolved target.
    """

    kind: ClassVar[EntryKind] = EntryKind.SYMLINK

    target: str = ""

    @property
    def type_name(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class EmptyDirEntry:
    """
    A directory with no children.
    """

    kind: ClassVar[EntryKind] = EntryKind.EMPTY_DIR

    @property
    def type_name(self) -> str:
        return self.kind.value


VolumeEntry = Union[FileEntry, SymlinkEntry, EmptyDirEntry]

#: Canonical flat representation of a tree: absolute path to entry.
VolumeMap = Dict[str, VolumeEntry]


class PathType(Enum):
    """
    Types reported for every path in a volume by ``scan_volume_paths()``.
    """

    FILE = "file"
    DIR = "dir"
    SYMLINK = "symlink"
    OTHER = "other"


class SourceKind(Enum):
    """
    Recognised tree sources.
    """

    VOLUME = "volume"
    JSON = "json"
    DIRECTORY = "directory"


@dataclass
class _PendingRead:
    """
    A file or symlink found while walking a real directory whose payload
    is still to be read.
    """

    key: str
    path: str
    kind: EntryKind
    entry: Optional[VolumeEntry] = field(default=None)


def resolve_prefix(prefix: Optional[str]) -> str:
    """
    Resolve ``prefix`` to a normalised absolute volume path.

    :param prefix: An optional prefix, absolute or relative to ``/``.
    :type prefix: ``Optional[str]``
    :returns: The resolved path, with no trailing slash unless it is ``/``.
    :rtype: ``str``
    """
    if not prefix:
        return "/"
    return posixpath.normpath(posixpath.join("/", prefix)).replace("//", "/")


def _rebase(path: str, root: str) -> str:
    """
    Re-root ``path`` relative to ``root`` at ``/``.
    """
    rel = posixpath.relpath(path, root)
    return "/" if rel == "." else "/" + rel


def source_kind(source) -> SourceKind:
    """
    Classify a volume-like ``source``.

    :param source: A ``FakeFilesystem``, a ``dict`` tree literal or the path
                   of an existing real directory.
    :returns: The kind of tree source.
    :rtype: ``SourceKind``
    :raises InvalidSourceError: If ``source`` is not a recognised tree source.
    """
    if isinstance(source, FakeFilesystem):
        return SourceKind.VOLUME
    if isinstance(source, dict):
        return SourceKind.JSON
    if isinstance(source, (str, os.PathLike)) and os.path.isdir(source):
        return SourceKind.DIRECTORY
    raise InvalidSourceError(
        f"Expected a volume, a JSON tree or a directory path, got {source!r}"
    )


def _iter_json(tree: dict, base: str):
    """
    Yield ``(path, value)`` pairs from a flat and/or nested JSON tree.
    """
    for name, value in tree.items():
        path = posixpath.normpath(posixpath.join(base, str(name)))
        if isinstance(value, dict):
            if not value:
                yield path, None
            yield from _iter_json(value, path)
        else:
            yield path, value


def volume_from_json(tree: dict, cwd: str = "/") -> FakeFilesystem:
    """
    Build a new volume from a JSON tree literal.

    Keys are paths, absolute or relative to ``cwd``. A ``str`` or ``bytes``
    value creates a file, ``None`` creates an empty directory and a nested
    ``dict`` creates a directory holding the nested entries.

    :param tree: The tree literal.
    :type tree: ``dict``
    :param cwd: The directory that relative keys are resolved against.
    :type cwd: ``str``
    :returns: A new volume populated from ``tree``.
    :rtype: ``FakeFilesystem``
    """
    if not isinstance(tree, dict):
        raise InvalidSourceError(f"Expected a JSON tree object, got {tree!r}")

    volume = FakeFilesystem(path_separator="/")
    for path, value in _iter_json(tree, resolve_prefix(cwd)):
        if value is None:
            if not volume.exists(path):
                volume.create_dir(path)
        elif isinstance(value, str):
            volume.create_file(path, contents=value, encoding="utf-8")
        elif isinstance(value, bytes):
            volume.create_file(path, contents=value)
        else:
            raise InvalidSourceError(
                f"Expected str, bytes, dict or None for '{path}', "
                f"got {type(value).__name__}"
            )
    return volume


def volume_from_map(volume_map: VolumeMap) -> FakeFilesystem:
    """
    Build a new volume holding the entries of ``volume_map``.

    :param volume_map: The flattened tree to materialise.
    :type volume_map: ``VolumeMap``
    :returns: A new volume.
    :rtype: ``FakeFilesystem``
    """
    volume = FakeFilesystem(path_separator="/")
    for path, entry in sorted(volume_map.items()):
        if entry.kind == EntryKind.EMPTY_DIR:
            if not volume.exists(path):
                volume.create_dir(path)
        elif entry.kind == EntryKind.FILE:
            volume.create_file(path, contents=entry.data)
        else:
            volume.create_symlink(path, entry.target)
    return volume


def _lstat_mode(volume: FakeFilesystem, path: str) -> int:
    return volume.lresolve(path).st_mode


def volume_to_map(
    volume: FakeFilesystem,
    prefix: Optional[str] = None,
    include_content: bool = True,
) -> VolumeMap:
    """
    Flatten the tree rooted at ``prefix`` in ``volume``.

    Empty directories below the root are recorded as ``EmptyDirEntry``
    markers. An empty or missing root flattens to an empty map.

    :param volume: The volume to flatten.
    :type volume: ``FakeFilesystem``
    :param prefix: The subtree to flatten, rebased to ``/`` in the result.
    :type prefix: ``Optional[str]``
    :param include_content: Read file content. When ``False`` files are
                            recorded with empty data.
    :type include_content: ``bool``
    :returns: The flattened volume.
    :rtype: ``VolumeMap``
    """
    root = resolve_prefix(prefix)
    volume_map: VolumeMap = {}

    if not volume.exists(root, check_link=True):
        _log_debug_volume("Volume prefix %s does not exist", root)
        return volume_map

    def _walk(path: str):
        mode = _lstat_mode(volume, path)
        if stat.S_ISDIR(mode):
            names = volume.listdir(path)
            if not names and path != root:
                volume_map[_rebase(path, root)] = EmptyDirEntry()
            for name in names:
                _walk(posixpath.join(path, name))
        elif stat.S_ISLNK(mode):
            volume_map[_rebase(path, root)] = SymlinkEntry(volume.readlink(path))
        elif stat.S_ISREG(mode):
            data = volume.lresolve(path).byte_contents if include_content else b""
            volume_map[_rebase(path, root)] = FileEntry(data or b"")

    _walk(root)
    _log_debug_volume("Flattened volume at %s to %d entries", root, len(volume_map))
    return volume_map


def json_to_map(
    tree: dict, prefix: Optional[str] = None, include_content: bool = True
) -> VolumeMap:
    """
    Flatten a JSON tree literal.

    :param tree: The tree literal (see ``volume_from_json()``).
    :type tree: ``dict``
    :param prefix: The subtree to flatten, rebased to ``/`` in the result.
    :type prefix: ``Optional[str]``
    :param include_content: Record file content.
    :type include_content: ``bool``
    :returns: The flattened tree.
    :rtype: ``VolumeMap``
    """
    return volume_to_map(
        volume_from_json(tree), prefix=prefix, include_content=include_content
    )


def _read_pending(pending: _PendingRead, include_content: bool) -> _PendingRead:
    if pending.kind == EntryKind.SYMLINK:
        pending.entry = SymlinkEntry(os.readlink(pending.path))
    elif include_content:
        with open(pending.path, "rb") as fp:
            pending.entry = FileEntry(fp.read())
    else:
        pending.entry = FileEntry()
    return pending


def dir_to_map(
    path: Union[str, os.PathLike],
    prefix: Optional[str] = None,
    include_content: bool = True,
    max_workers: int = MAX_IO_WORKERS,
) -> VolumeMap:
    """
    Flatten a real directory tree.

    File and symlink reads are issued concurrently using at most
    ``max_workers`` threads. Errors from the underlying file system
    propagate to the caller. As for ``volume_to_map()``, an empty or
    missing root flattens to an empty map.

    :param path: The directory to flatten.
    :type path: ``Union[str, os.PathLike]``
    :param prefix: The subtree of ``path`` to flatten, rebased to ``/``.
    :type prefix: ``Optional[str]``
    :param include_content: Read file content.
    :type include_content: ``bool``
    :param max_workers: Maximum number of concurrent reads.
    :type max_workers: ``int``
    :returns: The flattened tree.
    :rtype: ``VolumeMap``
    """
    base = os.fspath(path)
    root = os.path.join(base, resolve_prefix(prefix).lstrip("/"))
    volume_map: VolumeMap = {}

    if not os.path.isdir(root):
        _log_debug_volume("Directory prefix %s does not exist", root)
        return volume_map

    def _key(abs_path: str) -> str:
        rel = os.path.relpath(abs_path, root)
        return "/" if rel == os.curdir else "/" + rel.replace(os.sep, "/")

    pending: List[_PendingRead] = []
    to_visit = [root]
    while to_visit:
        dir_path = to_visit.pop()
        with os.scandir(dir_path) as it:
            entries = sorted(it, key=lambda e: e.name)
        if not entries and dir_path != root:
            volume_map[_key(dir_path)] = EmptyDirEntry()
        for entry in entries:
            if entry.is_symlink():
                pending.append(_PendingRead(_key(entry.path), entry.path, EntryKind.SYMLINK))
            elif entry.is_dir(follow_symlinks=False):
                to_visit.append(entry.path)
            elif entry.is_file(follow_symlinks=False):
                pending.append(_PendingRead(_key(entry.path), entry.path, EntryKind.FILE))
            else:
                _log_debug_volume("Skipping special file %s", entry.path)

    with ThreadPoolExecutor(
        max_workers=max(1, max_workers), thread_name_prefix="volmatch-read"
    ) as executor:
        done = executor.map(lambda p: _read_pending(p, include_content), pending)
        for item in done:
            volume_map[item.key] = item.entry

    _log_debug_volume(
        "Flattened directory %s to %d entries (%d reads)",
        root,
        len(volume_map),
        len(pending),
    )
    return volume_map


def flatten(
    source, prefix: Optional[str] = None, include_content: bool = True
) -> VolumeMap:
    """
    Flatten any recognised tree source into a ``VolumeMap``.

    :param source: A ``FakeFilesystem``, a JSON tree literal or the path of
                   an existing real directory.
    :param prefix: The subtree to flatten, rebased to ``/`` in the result.
    :type prefix: ``Optional[str]``
    :param include_content: Read file content.
    :type include_content: ``bool``
    :returns: The flattened tree.
    :rtype: ``VolumeMap``
    :raises InvalidSourceError: If ``source`` is not a recognised tree source.
    """
    kind = source_kind(source)
    _log_debug_volume("Flattening %s source (prefix=%s)", kind.value, prefix)
    if kind == SourceKind.VOLUME:
        return volume_to_map(source, prefix=prefix, include_content=include_content)
    if kind == SourceKind.JSON:
        return json_to_map(source, prefix=prefix, include_content=include_content)
    return dir_to_map(source, prefix=prefix, include_content=include_content)


def scan_volume_paths(
    volume: FakeFilesystem, prefix: Optional[str] = None
) -> List[Tuple[str, PathType]]:
    """
    List every path below ``prefix`` in ``volume`` with its type.

    Unlike a ``VolumeMap`` this includes non-empty directories. Paths are
    absolute volume paths and the prefix root itself is not listed.

    :param volume: The volume to scan.
    :type volume: ``FakeFilesystem``
    :param prefix: The directory to scan from.
    :type prefix: ``Optional[str]``
    :returns: A list of ``(path, type)`` tuples in walk order.
    :rtype: ``List[Tuple[str, PathType]]``
    """
    root = resolve_prefix(prefix)
    paths: List[Tuple[str, PathType]] = []

    if not volume.exists(root, check_link=True):
        return paths

    def _walk(dir_path: str):
        for name in sorted(volume.listdir(dir_path)):
            path = posixpath.join(dir_path, name)
            mode = _lstat_mode(volume, path)
            if stat.S_ISDIR(mode):
                paths.append((path, PathType.DIR))
                _walk(path)
            elif stat.S_ISLNK(mode):
                paths.append((path, PathType.SYMLINK))
            elif stat.S_ISREG(mode):
                paths.append((path, PathType.FILE))
            else:
                paths.append((path, PathType.OTHER))

    if stat.S_ISDIR(_lstat_mode(volume, root)):
        _walk(root)
    _log_debug_volume("Scanned %d paths below %s", len(paths), root)
    return paths


__all__ = [
    "MAX_IO_WORKERS",
    "EntryKind",
    "FileEntry",
    "SymlinkEntry",
    "EmptyDirEntry",
    "VolumeEntry",
    "VolumeMap",
    "PathType",
    "SourceKind",
    "resolve_prefix",
    "source_kind",
    "volume_from_json",
    "volume_from_map",
    "volume_to_map",
    "json_to_map",
    "dir_to_map",
    "flatten",
    "scan_volume_paths",
]
