# Copyright Red Hat
#
# volmatch/__init__.py - Volume matcher package initialisation
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Volmatch top-level package.

Assertion helpers comparing in-memory ``pyfakefs`` volumes with other
volumes, JSON tree literals and on-disk snapshot directories. The main
entry points are ``VolumeAssertionsMixin``, ``match_volume()``,
``have_volume_entries()`` and ``match_volume_snapshot()``.
"""
from ._volmatch import *  # noqa: F401, F403
from ._volmatch import __all__ as _volmatch_all

from .assertions import (
    MatchResult,
    VolumeAssertionsMixin,
    have_volume_entries,
    match_volume,
    match_volume_snapshot,
)
from .engine import CompareResult, compare_maps, format_diff
from .entries import build_rules, match_entries
from .options import ContentMatch, ListMatch, MatchOptions, ReportMode
from .snapshot import UpdateState, read_snapshot, write_snapshot
from .volume import flatten, scan_volume_paths, volume_from_json, volume_to_map

__version__ = "0.1.0"

__all__ = _volmatch_all + [
    "MatchResult",
    "VolumeAssertionsMixin",
    "have_volume_entries",
    "match_volume",
    "match_volume_snapshot",
    "CompareResult",
    "compare_maps",
    "format_diff",
    "build_rules",
    "match_entries",
    "ContentMatch",
    "ListMatch",
    "MatchOptions",
    "ReportMode",
    "UpdateState",
    "read_snapshot",
    "write_snapshot",
    "flatten",
    "scan_volume_paths",
    "volume_from_json",
    "volume_to_map",
    "__version__",
]
