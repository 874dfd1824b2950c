# Copyright Red Hat
#
# volmatch/options.py - Volume matcher comparison options
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Volume comparison options and policies.
"""
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Union
from argparse import Namespace
from enum import Enum
import logging

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


class ListMatch(Enum):
    """
    How the set of paths in the received volume must correspond to the
    expected volume.
    """

    #: Directory contents must match exactly
    EXACT = "exact"
    #: Extra paths in the received volume are ignored
    IGNORE_EXTRA = "ignore-extra"
    #: Paths missing from the received volume are ignored
    IGNORE_MISSING = "ignore-missing"


class ContentMatch(Enum):
    """
    Which entry payloads are compared once paths and types agree.
    """

    #: Compare file contents and symlink targets
    ALL = "all"
    #: Only check path and type
    IGNORE = "ignore"
    #: Skip file content comparison
    IGNORE_FILES = "ignore-files"
    #: Skip symlink target comparison
    IGNORE_SYMLINKS = "ignore-symlinks"


class ReportMode(Enum):
    """
    Whether comparison stops at the first mismatch or collects all of them.
    """

    FIRST = "first"
    ALL = "all"


def _coerce(enum_type, value):
    """
    Convert ``value`` into a member of ``enum_type``.

    :param enum_type: The target ``Enum`` class.
    :param value: An enum member, its string value, or ``None``.
    :returns: The matching enum member, or ``None`` if ``value`` is ``None``.
    """
    if value is None or isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        valid = ", ".join(f"'{member.value}'" for member in enum_type)
        raise ValueError(
            f"Invalid {enum_type.__name__} value '{value}': expected one of {valid}"
        ) from None


#: Keyword aliases accepted by ``MatchOptions.from_kwargs()``.
_OPTION_ALIASES = {
    "listMatch": "list_match",
    "list-match": "list_match",
    "contentMatch": "content_match",
    "content-match": "content_match",
    "useMagicFileType": "use_magic_file_type",
}


@dataclass(frozen=True)
class MatchOptions:
    """
    Volume comparison options.
    """

    #: How to match the set of paths between the two volumes
    list_match: Union[ListMatch, str] = ListMatch.EXACT
    #: Which entry payloads to compare
    content_match: Union[ContentMatch, str] = ContentMatch.ALL
    #: Stop at the first mismatch or report all of them
    report: Union[ReportMode, str] = ReportMode.FIRST
    #: Restrict comparison to the subtree rooted at this path
    prefix: Optional[str] = None
    #: Classify file content with libmagic when rendering diffs
    use_magic_file_type: bool = False

    def __post_init__(self):
        # Frozen dataclass: assign coerced values through object.__setattr__
        object.__setattr__(
            self, "list_match", _coerce(ListMatch, self.list_match or ListMatch.EXACT)
        )
        object.__setattr__(
            self,
            "content_match",
            _coerce(ContentMatch, self.content_match or ContentMatch.ALL),
        )
        object.__setattr__(
            self, "report", _coerce(ReportMode, self.report or ReportMode.FIRST)
        )
        object.__setattr__(self, "prefix", self.prefix or None)
        object.__setattr__(self, "use_magic_file_type", bool(self.use_magic_file_type))

    def __str__(self):
        """
        Return a human readable string representation of this
        ``MatchOptions`` instance.

        :returns: A human readable string.
        :rtype: ``str``
        """

        def _value(val: Any) -> str:
            return val.value if isinstance(val, Enum) else str(val)

        return "\n".join(
            f"{field.name}={_value(getattr(self, field.name))}" for field in fields(self)
        )

    @property
    def compare_files(self) -> bool:
        """
        ``True`` if file contents take part in the comparison.
        """
        return self.content_match not in (ContentMatch.IGNORE, ContentMatch.IGNORE_FILES)

    @property
    def compare_symlinks(self) -> bool:
        """
        ``True`` if symlink targets take part in the comparison.
        """
        return self.content_match not in (
            ContentMatch.IGNORE,
            ContentMatch.IGNORE_SYMLINKS,
        )

    @classmethod
    def from_cmd_args(cls, cmd_args: Namespace) -> "MatchOptions":
        """
        Initialise MatchOptions from command line arguments.

        Construct a new ``MatchOptions`` object from the command line
        arguments in ``cmd_args``. Attributes that do not correspond to an
        option are ignored.

        :param cmd_args: The command line selection arguments.
        :type cmd_args: ``Namespace``
        :returns: A new ``MatchOptions`` instance
        :rtype: ``MatchOptions``
        """
        field_names = {f.name for f in fields(cls)}
        kwargs = {
            name: getattr(cmd_args, name)
            for name in field_names
            if hasattr(cmd_args, name)
        }
        options = cls(**kwargs)
        _log_debug("Initialised MatchOptions from arguments: %s", repr(options))
        return options

    @classmethod
    def from_kwargs(cls, **kwargs: Any) -> "MatchOptions":
        """
        Initialise MatchOptions from keyword arguments, accepting both the
        Python attribute names and the ``listMatch``/``list-match`` style
        aliases.

        :returns: A new ``MatchOptions`` instance
        :rtype: ``MatchOptions``
        """
        field_names = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in kwargs.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in field_names:
                raise TypeError(f"Unknown volume match option: '{key}'")
            values[name] = value
        options = cls(**values)
        _log_debug("Initialised MatchOptions from keywords: %s", repr(options))
        return options


__all__ = [
    "ContentMatch",
    "ListMatch",
    "MatchOptions",
    "ReportMode",
]
