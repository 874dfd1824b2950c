# Copyright Red Hat
#
# volmatch/_volmatch.py - Volume matcher global definitions
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level volmatch package.
"""
import logging
import os

_log = logging.getLogger("volmatch")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# Volmatch debugging subsystem mask
VOLMATCH_DEBUG_VOLUME = 1
VOLMATCH_DEBUG_COMPARE = 2
VOLMATCH_DEBUG_ENTRIES = 4
VOLMATCH_DEBUG_SNAPSHOT = 8
VOLMATCH_DEBUG_COMMAND = 16
VOLMATCH_DEBUG_ALL = (
    VOLMATCH_DEBUG_VOLUME
    | VOLMATCH_DEBUG_COMPARE
    | VOLMATCH_DEBUG_ENTRIES
    | VOLMATCH_DEBUG_SNAPSHOT
    | VOLMATCH_DEBUG_COMMAND
)

# Volmatch debugging subsystem names
VOLMATCH_SUBSYSTEM_VOLUME = "volmatch.volume"
VOLMATCH_SUBSYSTEM_COMPARE = "volmatch.compare"
VOLMATCH_SUBSYSTEM_ENTRIES = "volmatch.entries"
VOLMATCH_SUBSYSTEM_SNAPSHOT = "volmatch.snapshot"
VOLMATCH_SUBSYSTEM_COMMAND = "volmatch.command"

_DEBUG_MASK_TO_SUBSYSTEM = {
    VOLMATCH_DEBUG_VOLUME: VOLMATCH_SUBSYSTEM_VOLUME,
    VOLMATCH_DEBUG_COMPARE: VOLMATCH_SUBSYSTEM_COMPARE,
    VOLMATCH_DEBUG_ENTRIES: VOLMATCH_SUBSYSTEM_ENTRIES,
    VOLMATCH_DEBUG_SNAPSHOT: VOLMATCH_SUBSYSTEM_SNAPSHOT,
    VOLMATCH_DEBUG_COMMAND: VOLMATCH_SUBSYSTEM_COMMAND,
}

#: Debug option names accepted by ``--debug`` and ``VOLMATCH_DEBUG``.
DEBUG_OPTIONS = {
    "volume": VOLMATCH_DEBUG_VOLUME,
    "compare": VOLMATCH_DEBUG_COMPARE,
    "entries": VOLMATCH_DEBUG_ENTRIES,
    "snapshot": VOLMATCH_DEBUG_SNAPSHOT,
    "command": VOLMATCH_DEBUG_COMMAND,
    "all": VOLMATCH_DEBUG_ALL,
}

#: Environment variable selecting the snapshot update state.
ENV_UPDATE_SNAPSHOTS = "VOLMATCH_UPDATE_SNAPSHOTS"

#: Environment variable holding a comma separated list of debug options.
ENV_DEBUG = "VOLMATCH_DEBUG"

_debug_subsystems = set()


class SubsystemFilter(logging.Filter):
    """
    Filters DEBUG records based on a set of enabled subsystem names.
    Non-DEBUG records or DEBUG records without a 'subsystem' attribute
    are always passed through.
    """

    def __init__(self, name=""):
        super().__init__(name)
        self.enabled_subsystems = set(_debug_subsystems)

    def filter(self, record):
        if record.levelno != logging.DEBUG:
            return True

        if not hasattr(record, "subsystem"):
            return True

        return record.subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Sets the collection of subsystems to allow."""
        self.enabled_subsystems = set(subsystems)


def get_debug_mask():
    """
    Return the current debug mask for the ``volmatch`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    enabled_subsystems = set(_debug_subsystems)
    volmatch_log = logging.getLogger("volmatch")

    for handler in volmatch_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                enabled_subsystems.update(f.enabled_subsystems)

    mask_map = {v: k for k, v in _DEBUG_MASK_TO_SUBSYSTEM.items()}
    mask = 0
    for subsystem_name in enabled_subsystems:
        mask |= mask_map.get(subsystem_name, 0)
    return mask


def set_debug_mask(mask):
    """
    Set the debug mask for the ``volmatch`` package.

    :param mask: the logical OR of the ``VOLMATCH_DEBUG_*``
                 values to log.
    :rtype: None
    """
    # pylint: disable=global-statement
    global _debug_subsystems

    if mask < 0 or mask > VOLMATCH_DEBUG_ALL:
        raise ValueError(f"Invalid volmatch debug mask: {mask}")

    enabled_subsystems = []
    for flag, subsystem_name in _DEBUG_MASK_TO_SUBSYSTEM.items():
        if mask & flag:
            enabled_subsystems.append(subsystem_name)

    volmatch_log = logging.getLogger("volmatch")
    for handler in volmatch_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                f.set_debug_subsystems(enabled_subsystems)

    _debug_subsystems = set(enabled_subsystems)


def parse_debug_options(value):
    """
    Convert a comma separated list of debug option names into a mask.

    :param value: Debug options, for example ``"compare,entries"``.
    :type value: ``str``
    :returns: The corresponding ``VOLMATCH_DEBUG_*`` mask.
    :rtype: ``int``
    """
    mask = 0
    for name in value.split(","):
        name = name.strip()
        if not name:
            continue
        if name not in DEBUG_OPTIONS:
            raise ValueError(f"Unknown debug option: {name}")
        mask |= DEBUG_OPTIONS[name]
    return mask


def setup_debug_from_env():
    """
    Apply the debug mask named by the ``VOLMATCH_DEBUG`` environment
    variable, if set.
    """
    value = os.environ.get(ENV_DEBUG)
    if not value:
        return
    set_debug_mask(parse_debug_options(value))
    _log_debug("Enabled debug subsystems from %s=%s", ENV_DEBUG, value)


#
# Volmatch exception types
#


class VolmatchError(Exception):
    """
    Base class for volume matcher errors.
    """


class InvalidSourceError(VolmatchError):
    """
    A volume-like argument is not a volume, a JSON tree literal or an
    existing directory.
    """


class InvalidRuleError(VolmatchError, TypeError):
    """
    Malformed existence-check input: bad shape, unknown entry type or a
    non-positive count.
    """


class UsageError(VolmatchError):
    """
    A matcher was used in an unsupported way, for example a snapshot
    match under negation or without a snapshot name.
    """


class SnapshotError(VolmatchError):
    """
    A snapshot is required but does not exist and the update state does
    not permit creating it.
    """


__all__ = [
    "VOLMATCH_DEBUG_VOLUME",
    "VOLMATCH_DEBUG_COMPARE",
    "VOLMATCH_DEBUG_ENTRIES",
    "VOLMATCH_DEBUG_SNAPSHOT",
    "VOLMATCH_DEBUG_COMMAND",
    "VOLMATCH_DEBUG_ALL",
    "VOLMATCH_SUBSYSTEM_VOLUME",
    "VOLMATCH_SUBSYSTEM_COMPARE",
    "VOLMATCH_SUBSYSTEM_ENTRIES",
    "VOLMATCH_SUBSYSTEM_SNAPSHOT",
    "VOLMATCH_SUBSYSTEM_COMMAND",
    "DEBUG_OPTIONS",
    "ENV_UPDATE_SNAPSHOTS",
    "ENV_DEBUG",
    "SubsystemFilter",
    "get_debug_mask",
    "set_debug_mask",
    "parse_debug_options",
    "setup_debug_from_env",
    "VolmatchError",
    "InvalidSourceError",
    "InvalidRuleError",
    "UsageError",
    "SnapshotError",
]
