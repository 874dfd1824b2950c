# Copyright Red Hat
#
# volmatch/entries.py - Volume matcher entry existence checks
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Entry existence checks.

Checks that paths, or paths matching glob patterns, are present in a
volume with an optional required type and minimum match count. File
content and symlink targets are never inspected.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Tuple, Union
from enum import Enum
import posixpath
import logging
import json
import re

from ._volmatch import VOLMATCH_SUBSYSTEM_ENTRIES, InvalidRuleError
from .volume import PathType, resolve_prefix

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_entries(msg, *args, **kwargs):
    """A wrapper for entries subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": VOLMATCH_SUBSYSTEM_ENTRIES}, **kwargs)


class EntryType(Enum):
    """
    Entry types accepted in existence rules.
    """

    FILE = "file"
    DIR = "dir"
    SYMLINK = "symlink"
    ANY = "any"


_VALID_ENTRY_TYPES = ", ".join(f"`{t.value}`" for t in EntryType)

# Escaped characters are removed before looking for glob syntax.
_ESCAPED_RE = re.compile(r"\\.")
_GLOB_RE = re.compile(r"[*?]|\[[^\]]+\]|\{[^}]*\}|[@!+]\([^)]*\)")


def is_glob_like(value: str) -> bool:
    """
    Return ``True`` if ``value`` contains glob syntax.

    Wildcards (``*``, ``?``), character classes (``[...]``), brace
    expansions (``{a,b}``) and extended globs (``!(...)``, ``@(...)``,
    ``+(...)``, ``?(...)``, ``*(...)``) are recognised. Escaped characters
    are ignored.

    :param value: The string to check.
    :type value: ``str``
    :rtype: ``bool``
    """
    return bool(_GLOB_RE.search(_ESCAPED_RE.sub("", value)))


def _find_closing(pattern: str, start: int, open_char: str, close_char: str) -> int:
    depth = 0
    i = start
    while i < len(pattern):
        c = pattern[i]
        if c == "\\":
            i += 2
            continue
        if c == open_char:
            depth += 1
        elif c == close_char:
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _split_alternatives(body: str, separator: str = ",") -> List[str]:
    parts = []
    depth = 0
    current = ""
    i = 0
    while i < len(body):
        c = body[i]
        if c == "\\" and i + 1 < len(body):
            current += body[i : i + 2]
            i += 2
            continue
        if c in "{(":
            depth += 1
        elif c in "})":
            depth -= 1
        elif c == separator and depth == 0:
            parts.append(current)
            current = ""
            i += 1
            continue
        current += c
        i += 1
    parts.append(current)
    return parts


#: Extended glob group operators and the regex quantifier each one applies.
_EXTGLOB_QUANTIFIERS = {"@": "", "?": "?", "*": "*", "+": "+"}


# pylint: disable=too-many-branches,too-many-statements
def _translate(pattern: str, tail: str = "") -> str:
    """
    Translate a glob pattern into an unanchored regular expression.

    ``tail`` is the expression that follows ``pattern`` in the complete
    glob. Negated extglob groups use it to reject whole-path matches.
    """
    out = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c in "@!?*+" and pattern.startswith("(", i + 1):
            end = _find_closing(pattern, i + 1, "(", ")")
            if end != -1:
                rest = _translate(pattern[end + 1 :], tail)
                alternatives = "|".join(
                    _translate(a, rest + tail)
                    for a in _split_alternatives(pattern[i + 2 : end], "|")
                )
                if c == "!":
                    # anything within one component except the alternatives
                    out.append(f"(?:(?!(?:{alternatives}){rest}{tail}$)[^/]*?)")
                else:
                    out.append(f"(?:{alternatives}){_EXTGLOB_QUANTIFIERS[c]}")
                i = end + 1
                continue
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    # "**/" also matches zero directories
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 2 if pattern.startswith("[]", i) else i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1 : end].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end + 1
                continue
        elif c == "{":
            end = _find_closing(pattern, i, "{", "}")
            if end == -1:
                out.append(re.escape(c))
            else:
                after = _translate(pattern[end + 1 :], tail) + tail
                alternatives = _split_alternatives(pattern[i + 1 : end])
                out.append(
                    "(?:" + "|".join(_translate(a, after) for a in alternatives) + ")"
                )
                i = end + 1
                continue
        elif c == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def glob_to_regex(pattern: str) -> Pattern:
    """
    Compile a glob ``pattern`` into an anchored regular expression.

    ``*`` matches within a single path component, ``**`` matches across
    components (``**/`` also matches no component at all), ``?`` matches
    one character other than ``/``, ``[...]`` is a character class
    (``[!...]`` negated) and ``{a,b}`` matches either alternative.

    Extended glob groups take ``|`` separated alternatives: ``@(a|b)``
    matches one of them, ``?(...)`` at most one, ``*(...)`` any number,
    ``+(...)`` one or more and ``!(...)`` anything but the alternatives.

    :param pattern: The glob pattern.
    :type pattern: ``str``
    :returns: A compiled regular expression matching whole paths.
    :rtype: ``Pattern``
    """
    return re.compile("^" + _translate(pattern) + "$")


@dataclass(frozen=True)
class ExactMatchRule:
    """
    Require a single path to exist with an optional type.
    """

    identifier: str
    path: str
    exp_type: EntryType = EntryType.ANY


@dataclass(frozen=True)
class GlobMatchRule:
    """
    Require at least ``exp_count`` paths matching ``pattern``.
    """

    identifier: str
    pattern: str
    regex: Pattern = field(compare=False)
    exp_type: EntryType = EntryType.ANY
    exp_count: int = 1


MatchRule = Union[ExactMatchRule, GlobMatchRule]

#: Rules keyed by identifier, in insertion order.
MatchRules = Dict[str, MatchRule]


def _dump(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return repr(value)


def _create_rule(raw_path: str, prefix: str, config: Optional[dict] = None) -> MatchRule:
    """
    Build a single rule for ``raw_path`` resolved against ``prefix``.

    :raises InvalidRuleError: For an unknown type or a non-positive count.
    """
    config = config or {}
    type_value = config.get("type")
    count = config.get("count")

    if type_value is not None:
        try:
            exp_type = EntryType(type_value)
        except ValueError:
            raise InvalidRuleError(
                f"Expected entry type to be {_VALID_ENTRY_TYPES}, got `{type_value}`"
            ) from None
    else:
        exp_type = EntryType.ANY

    if count is not None and (
        isinstance(count, bool) or not isinstance(count, int) or count <= 0
    ):
        raise InvalidRuleError(
            f"Expected entry count to be a positive integer, got `{_dump(count)}`"
        )

    if raw_path.startswith("!"):
        raise InvalidRuleError(f"Negated patterns are not supported: `{raw_path}`")

    if raw_path.startswith("/"):
        resolved = posixpath.normpath(raw_path)
    else:
        resolved = posixpath.normpath(posixpath.join(prefix, raw_path))

    if is_glob_like(raw_path):
        return GlobMatchRule(
            identifier=f"glob(`{resolved}`)",
            pattern=resolved,
            regex=glob_to_regex(resolved),
            exp_type=exp_type,
            exp_count=count if count is not None else 1,
        )

    return ExactMatchRule(identifier=resolved, path=resolved, exp_type=exp_type)


def build_rules(expected, prefix: Optional[str] = None) -> MatchRules:
    """
    Build existence rules from ``expected``.

    ``expected`` may be a single path or glob string, a list of strings
    and ``{"path": ..., "type": ..., "count": ...}`` records, or a
    dictionary mapping paths or globs to a type string or a
    ``{"type": ..., "count": ...}`` record. Relative paths are resolved
    against ``prefix``. Rules with the same identifier replace earlier
    ones.

    :param expected: The expected entries.
    :param prefix: The directory that relative paths are resolved against.
    :type prefix: ``Optional[str]``
    :returns: Rules keyed by identifier.
    :rtype: ``MatchRules``
    :raises InvalidRuleError: If ``expected`` is malformed.
    """
    base = resolve_prefix(prefix)
    rules: MatchRules = {}

    def _add_rule(path: str, config: Optional[dict] = None):
        rule = _create_rule(path, base, config)
        rules[rule.identifier] = rule

    if isinstance(expected, str):
        _add_rule(expected)
    elif isinstance(expected, (list, tuple)):
        for value in expected:
            if isinstance(value, str):
                _add_rule(value)
            elif isinstance(value, dict) and isinstance(value.get("path"), str):
                _add_rule(value["path"], value)
            else:
                raise InvalidRuleError(
                    "Expected array item to be string | { path: string }, "
                    f"got `{_dump(value)}`"
                )
    elif isinstance(expected, dict):
        for key, value in expected.items():
            if isinstance(value, str):
                _add_rule(key, {"type": value})
            elif isinstance(value, dict):
                _add_rule(key, value)
            else:
                raise InvalidRuleError(
                    f"Expected object value for key `{key}` to be string | plain "
                    f"object, got `{_dump(value)}`"
                )
    else:
        raise InvalidRuleError(
            f"Expected string | array | plain object, got `{_dump(expected)}`"
        )

    _log_debug_entries("Built %d entry rules (prefix=%s)", len(rules), base)
    return rules


create_match_rules = build_rules


@dataclass
class EntriesMatch:
    """
    The outcome of checking existence rules against a volume.
    """

    #: Rules whose path was absent or whose glob matched too few paths
    missing_count: int = 0
    #: Rules whose path had the wrong type or whose glob matched too few
    #: paths of the required type
    type_count: int = 0
    #: Per-rule ``actual`` and ``expected`` diff records
    diff: Dict[str, Dict[str, Dict[str, Any]]] = field(
        default_factory=lambda: {"actual": {}, "expected": {}}
    )
    #: Every ``(path, type)`` that satisfied a rule
    matches: List[Tuple[str, PathType]] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        """
        ``True`` if every rule was satisfied.
        """
        return self.missing_count == 0 and self.type_count == 0


def _type_matches(rule: MatchRule, path_type: PathType) -> bool:
    return rule.exp_type == EntryType.ANY or path_type.value == rule.exp_type.value


def match_entries(
    path_entries: List[Tuple[str, PathType]], rules: MatchRules
) -> EntriesMatch:
    """
    Check ``rules`` against the ``(path, type)`` list of a volume.

    :param path_entries: The volume paths, as returned by
                         ``scan_volume_paths()``.
    :type path_entries: ``List[Tuple[str, PathType]]``
    :param rules: The rules to check.
    :type rules: ``MatchRules``
    :returns: Counts, per-rule diffs and the matching paths.
    :rtype: ``EntriesMatch``
    """
    result = EntriesMatch()
    actual = result.diff["actual"]
    expected = result.diff["expected"]

    for rule in rules.values():
        if isinstance(rule, ExactMatchRule):
            match = next((e for e in path_entries if e[0] == rule.path), None)
            if match is None:
                actual[rule.identifier] = {"exists": False}
                expected[rule.identifier] = {"exists": True}
                result.missing_count += 1
            elif not _type_matches(rule, match[1]):
                actual[rule.identifier] = {"type": match[1].value}
                expected[rule.identifier] = {"type": rule.exp_type.value}
                result.type_count += 1
            else:
                result.matches.append(match)
            continue

        matches = [e for e in path_entries if rule.regex.match(e[0])]
        if len(matches) < rule.exp_count:
            actual[rule.identifier] = {"count": len(matches)}
            expected[rule.identifier] = {"count": rule.exp_count}
            result.missing_count += 1
            continue

        typed = [e for e in matches if _type_matches(rule, e[1])]
        if len(typed) < rule.exp_count:
            actual[rule.identifier] = {"count": len(typed)}
            expected[rule.identifier] = {"count": rule.exp_count}
            result.type_count += 1
            continue

        result.matches.extend(typed)

    _log_debug_entries(
        "Matched %d rules against %d paths: %d missing, %d type mismatches",
        len(rules),
        len(path_entries),
        result.missing_count,
        result.type_count,
    )
    return result


__all__ = [
    "EntryType",
    "ExactMatchRule",
    "GlobMatchRule",
    "MatchRule",
    "MatchRules",
    "EntriesMatch",
    "is_glob_like",
    "glob_to_regex",
    "build_rules",
    "create_match_rules",
    "match_entries",
]
