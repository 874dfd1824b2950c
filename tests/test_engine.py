# Copyright Red Hat
#
# tests/test_engine.py - Volume comparison engine tests.
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from unittest.mock import MagicMock, patch
import base64
import json
import sys
from hashlib import sha1

from volmatch.engine import (
    BinaryFileDiff,
    DirectoryDiff,
    FileDiff,
    MatchedDiff,
    SymlinkDiff,
    compare_maps,
    compare_maps_all,
    compare_maps_first,
    diff_payload_json,
    format_diff,
)
from volmatch.options import MatchOptions
from volmatch.volume import EmptyDirEntry, FileEntry, SymlinkEntry

from ._util import BINARY_DATA


FOO_HI = {"/foo.txt": FileEntry(b"hi")}


class TestBinaryFileDiff(unittest.TestCase):
    def test_short_buffer(self):
        diff = BinaryFileDiff.from_bytes(b"\x00\x01")
        self.assertEqual(diff.length, 2)
        self.assertEqual(diff.hash, sha1(b"\x00\x01").hexdigest())
        self.assertEqual(diff.preview, base64.b64encode(b"\x00\x01").decode())

    def test_long_buffer(self):
        diff = BinaryFileDiff.from_bytes(BINARY_DATA)
        head = base64.b64encode(BINARY_DATA[:32]).decode()
        tail = base64.b64encode(BINARY_DATA[-32:]).decode()
        self.assertEqual(diff.preview, f"{head}...{tail}")
        self.assertEqual(diff.length, len(BINARY_DATA))

    def test_to_dict(self):
        self.assertEqual(FileDiff("x").to_dict(), {"type": "file", "data": "x"})
        self.assertEqual(FileDiff().to_dict(), {"type": "file"})
        self.assertEqual(SymlinkDiff("/t").to_dict(), {"type": "symlink", "target": "/t"})
        self.assertEqual(DirectoryDiff().to_dict(), {"type": "dir"})
        self.assertEqual(MatchedDiff().to_dict(), {})


class TestCompareFirst(unittest.TestCase):
    def test_match(self):
        result = compare_maps(FOO_HI, {"/foo.txt": FileEntry(b"hi")})
        self.assertTrue(result.passed)
        self.assertEqual(result.message(), "volumes matched")

    def test_content_mismatch(self):
        result = compare_maps(
            {"/foo.txt": FileEntry(b"hello")}, {"/foo.txt": FileEntry(b"world")}
        )
        self.assertFalse(result.passed)
        self.assertEqual(result.message(), "Found file content mismatch at `/foo.txt`")
        self.assertEqual(result.path, "/foo.txt")
        self.assertEqual(result.actual, FileDiff("hello"))
        self.assertEqual(result.expected, FileDiff("world"))

    def test_binary_mismatch(self):
        result = compare_maps(
            {"/blob": FileEntry(BINARY_DATA)}, {"/blob": FileEntry(BINARY_DATA[1:])}
        )
        self.assertFalse(result.passed)
        self.assertIsInstance(result.actual, BinaryFileDiff)
        self.assertIsInstance(result.expected, BinaryFileDiff)
        self.assertNotEqual(result.actual.hash, result.expected.hash)

    def test_magic_file_type(self):
        mock_magic = MagicMock(spec=["detect_from_content"])
        mock_res = MagicMock()
        mock_res.mime_type = "application/octet-stream"
        mock_res.name = "data"
        mock_res.encoding = "binary"
        mock_magic.detect_from_content.return_value = mock_res

        received = {"/foo.txt": FileEntry(b"hello")}
        expected = {"/foo.txt": FileEntry(b"world")}
        with patch.dict(sys.modules, {"magic": mock_magic}):
            result = compare_maps(
                received, expected, MatchOptions(use_magic_file_type=True)
            )
            self.assertIsInstance(result.actual, BinaryFileDiff)
            self.assertIsInstance(result.expected, BinaryFileDiff)
        mock_magic.detect_from_content.assert_any_call(b"hello")

    def test_magic_file_type_off(self):
        mock_magic = MagicMock(spec=["detect_from_content"])
        with patch.dict(sys.modules, {"magic": mock_magic}):
            result = compare_maps(
                {"/foo.txt": FileEntry(b"hello")}, {"/foo.txt": FileEntry(b"world")}
            )
            self.assertIsInstance(result.actual, FileDiff)
        mock_magic.detect_from_content.assert_not_called()

    def test_structure_mismatch(self):
        result = compare_maps(
            {"/foo.txt": FileEntry(b"hi"), "/extra.txt": FileEntry(b"x")}, FOO_HI
        )
        self.assertFalse(result.passed)
        self.assertEqual(result.message(), "Directory structure didn't match")
        self.assertEqual(result.actual, ["/extra.txt", "/foo.txt"])
        self.assertEqual(result.expected, ["/foo.txt"])
        self.assertEqual(result.reason, "exact")

    def test_exact_same_size_different_keys(self):
        result = compare_maps({"/a": FileEntry(b"")}, {"/b": FileEntry(b"")})
        self.assertFalse(result.passed)
        self.assertEqual(result.message(), "Directory structure didn't match")

    def test_ignore_extra(self):
        received = {"/foo.txt": FileEntry(b"hi"), "/extra.txt": FileEntry(b"x")}
        opts = MatchOptions(list_match="ignore-extra")
        self.assertTrue(compare_maps(received, FOO_HI, opts).passed)

    def test_ignore_extra_missing(self):
        expected = {"/foo.txt": FileEntry(b"hi"), "/a": FileEntry(b""), "/b": FileEntry(b"")}
        received = {"/foo.txt": FileEntry(b"hi"), "/extra.txt": FileEntry(b"x")}
        result = compare_maps(received, expected, MatchOptions(list_match="ignore-extra"))
        self.assertFalse(result.passed)
        self.assertEqual(result.message(), "Volume is missing 2 expected files")
        self.assertEqual(result.actual, ["/foo.txt"])
        self.assertEqual(result.expected, ["/a", "/b", "/foo.txt"])
        self.assertEqual(result.reason, "ignore-extra")

    def test_ignore_missing(self):
        expected = {"/foo.txt": FileEntry(b"hi"), "/bar.txt": FileEntry(b"y")}
        opts = MatchOptions(list_match="ignore-missing")
        self.assertTrue(compare_maps(FOO_HI, expected, opts).passed)

    def test_ignore_missing_extra(self):
        received = {"/foo.txt": FileEntry(b"hi"), "/extra.txt": FileEntry(b"x")}
        expected = {"/foo.txt": FileEntry(b"hi"), "/bar.txt": FileEntry(b"y")}
        result = compare_maps(received, expected, MatchOptions(list_match="ignore-missing"))
        self.assertFalse(result.passed)
        self.assertEqual(result.message(), "Volume has 1 unexpected file")
        self.assertEqual(result.actual, ["/extra.txt", "/foo.txt"])
        self.assertEqual(result.expected, ["/foo.txt"])

    def test_type_mismatch(self):
        result = compare_maps({"/p": EmptyDirEntry()}, {"/p": FileEntry(b"x")})
        self.assertEqual(result.message(), "Found path type mismatch at `/p`")
        self.assertEqual(result.actual, DirectoryDiff())
        self.assertEqual(result.expected, FileDiff("x"))

    def test_symlink_mismatch(self):
        result = compare_maps({"/l": SymlinkEntry("/a")}, {"/l": SymlinkEntry("/b")})
        self.assertEqual(result.message(), "Found symlink target mismatch at `/l`")
        self.assertEqual(result.actual, SymlinkDiff("/a"))
        self.assertEqual(result.expected, SymlinkDiff("/b"))

    def test_first_mismatch_sorted(self):
        received = {"/b": FileEntry(b"1"), "/a": FileEntry(b"1")}
        expected = {"/a": FileEntry(b"2"), "/b": FileEntry(b"2")}
        result = compare_maps_first(received, expected, MatchOptions())
        self.assertEqual(result.path, "/a")

    def test_content_ignore(self):
        received = {"/f": FileEntry(b"1"), "/l": SymlinkEntry("/a")}
        expected = {"/f": FileEntry(b"2"), "/l": SymlinkEntry("/b")}
        self.assertTrue(compare_maps(received, expected, MatchOptions(content_match="ignore")).passed)

    def test_content_ignore_files(self):
        received = {"/f": FileEntry(b"1"), "/l": SymlinkEntry("/a")}
        expected = {"/f": FileEntry(b"2"), "/l": SymlinkEntry("/b")}
        result = compare_maps(received, expected, MatchOptions(content_match="ignore-files"))
        self.assertEqual(result.message(), "Found symlink target mismatch at `/l`")

    def test_content_ignore_symlinks(self):
        received = {"/f": FileEntry(b"1"), "/l": SymlinkEntry("/a")}
        expected = {"/f": FileEntry(b"2"), "/l": SymlinkEntry("/b")}
        result = compare_maps(received, expected, MatchOptions(content_match="ignore-symlinks"))
        self.assertEqual(result.message(), "Found file content mismatch at `/f`")

    def test_type_mismatch_content_ignored(self):
        result = compare_maps(
            {"/p": SymlinkEntry("/x")},
            {"/p": FileEntry(b"x")},
            MatchOptions(content_match="ignore"),
        )
        self.assertEqual(result.actual, SymlinkDiff())
        self.assertEqual(result.expected, FileDiff())


class TestCompareAll(unittest.TestCase):
    opts = MatchOptions(report="all")

    def test_match(self):
        self.assertTrue(compare_maps(FOO_HI, dict(FOO_HI), self.opts).passed)

    def test_missing_and_extra(self):
        received = {"/foo.txt": FileEntry(b"hi"), "/extra.txt": FileEntry(b"x")}
        expected = {"/foo.txt": FileEntry(b"hi"), "/bar.txt": FileEntry(b"y")}
        result = compare_maps(received, expected, self.opts)
        self.assertFalse(result.passed)
        self.assertEqual(
            result.message(), "Found 2 mismatches: 1 missing path, 1 unexpected path"
        )
        self.assertEqual(result.expected["/bar.txt"], FileDiff("y"))
        self.assertEqual(result.actual["/extra.txt"], FileDiff("x"))
        self.assertNotIn("/bar.txt", result.actual)
        self.assertNotIn("/extra.txt", result.expected)
        self.assertEqual(result.actual["/foo.txt"], MatchedDiff())
        self.assertEqual(result.expected["/foo.txt"], MatchedDiff())
        self.assertEqual(result.counts, {"missing": 1, "extra": 1, "type": 0, "content": 0})

    def test_single_category(self):
        received = {"/a": FileEntry(b"1"), "/b": FileEntry(b"1")}
        expected = {"/a": FileEntry(b"2"), "/b": FileEntry(b"2")}
        result = compare_maps_all(received, expected, self.opts)
        self.assertEqual(result.message(), "Found 2 mismatched content")

    def test_plural_type_mismatches(self):
        received = {"/a": EmptyDirEntry(), "/b": EmptyDirEntry()}
        expected = {"/a": FileEntry(b""), "/b": SymlinkEntry("/x")}
        result = compare_maps_all(received, expected, self.opts)
        self.assertEqual(result.message(), "Found 2 path type mismatches")

    def test_all_categories(self):
        received = {
            "/type": EmptyDirEntry(),
            "/content": FileEntry(b"1"),
            "/extra1": FileEntry(b""),
            "/extra2": FileEntry(b""),
        }
        expected = {
            "/type": FileEntry(b""),
            "/content": FileEntry(b"2"),
            "/missing": FileEntry(b""),
        }
        result = compare_maps_all(received, expected, self.opts)
        self.assertEqual(
            result.message(),
            "Found 5 mismatches: 1 missing path, 2 unexpected paths, "
            "1 path type mismatch, 1 mismatched content",
        )

    def test_ignore_extra(self):
        received = {"/foo.txt": FileEntry(b"hi"), "/extra.txt": FileEntry(b"x")}
        opts = MatchOptions(report="all", list_match="ignore-extra")
        result = compare_maps(received, FOO_HI, opts)
        self.assertTrue(result.passed)

    def test_ignore_missing(self):
        expected = {"/foo.txt": FileEntry(b"hello"), "/bar.txt": FileEntry(b"y")}
        opts = MatchOptions(report="all", list_match="ignore-missing")
        result = compare_maps({"/foo.txt": FileEntry(b"hi")}, expected, opts)
        self.assertEqual(result.message(), "Found 1 mismatched content")
        self.assertEqual(list(result.expected), ["/foo.txt"])


class TestCompareProperties(unittest.TestCase):
    maps = [
        {},
        {"/a": FileEntry(b"1")},
        {"/a": FileEntry(b"2")},
        {"/a": FileEntry(b"1"), "/b": SymlinkEntry("/a")},
        {"/a": EmptyDirEntry()},
        {"/b": SymlinkEntry("/a"), "/a": FileEntry(b"1")},
    ]

    def test_exact_symmetry(self):
        for report in ("first", "all"):
            opts = MatchOptions(report=report)
            for a in self.maps:
                for b in self.maps:
                    self.assertEqual(
                        compare_maps(a, b, opts).passed,
                        compare_maps(b, a, opts).passed,
                        (a, b, report),
                    )

    def test_exact_implies_ignore(self):
        for a in self.maps:
            for b in self.maps:
                if not compare_maps(a, b).passed:
                    continue
                for list_match in ("ignore-extra", "ignore-missing"):
                    for report in ("first", "all"):
                        opts = MatchOptions(list_match=list_match, report=report)
                        self.assertTrue(compare_maps(a, b, opts).passed)

    def test_content_ignore_insensitive(self):
        a = {"/f": FileEntry(b"one"), "/l": SymlinkEntry("/x"), "/d": EmptyDirEntry()}
        b = {"/f": FileEntry(b"two"), "/l": SymlinkEntry("/y"), "/d": EmptyDirEntry()}
        for report in ("first", "all"):
            opts = MatchOptions(content_match="ignore", report=report)
            self.assertTrue(compare_maps(a, b, opts).passed)


class TestFormatDiff(unittest.TestCase):
    def test_passed_is_empty(self):
        self.assertEqual(format_diff(compare_maps(FOO_HI, FOO_HI)), "")

    def test_unified_diff(self):
        result = compare_maps(
            {"/foo.txt": FileEntry(b"hello")}, {"/foo.txt": FileEntry(b"world")}
        )
        diff = format_diff(result)
        self.assertIn("--- expected", diff)
        self.assertIn("+++ received", diff)
        self.assertIn('-  "data": "world",', diff)
        self.assertIn('+  "data": "hello",', diff)

    def test_payload_json(self):
        payload = {"/a": FileDiff("x"), "/b": MatchedDiff()}
        self.assertEqual(
            json.loads(diff_payload_json(payload)),
            {"/a": {"type": "file", "data": "x"}, "/b": {}},
        )
