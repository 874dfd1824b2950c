# Copyright Red Hat
#
# tests/test_volume.py - Volume flattening tests.
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import logging
import os

from pyfakefs.fake_filesystem import FakeFilesystem

from volmatch import InvalidSourceError
from volmatch.volume import (
    EmptyDirEntry,
    EntryKind,
    FileEntry,
    PathType,
    SourceKind,
    SymlinkEntry,
    dir_to_map,
    flatten,
    json_to_map,
    resolve_prefix,
    scan_volume_paths,
    source_kind,
    volume_from_json,
    volume_from_map,
    volume_to_map,
)

from ._util import SRC_TREE, BINARY_DATA, TempDirMixin, make_volume, write_tree

log = logging.getLogger()


class TestEntries(unittest.TestCase):
    def test_type_names(self):
        self.assertEqual(FileEntry(b"x").type_name, "file")
        self.assertEqual(SymlinkEntry("/t").type_name, "symlink")
        self.assertEqual(EmptyDirEntry().type_name, "empty-dir")

    def test_equality(self):
        self.assertEqual(FileEntry(b"x"), FileEntry(b"x"))
        self.assertNotEqual(FileEntry(b"x"), FileEntry(b"y"))
        self.assertEqual(EmptyDirEntry(), EmptyDirEntry())

    def test_resolve_prefix(self):
        self.assertEqual(resolve_prefix(None), "/")
        self.assertEqual(resolve_prefix(""), "/")
        self.assertEqual(resolve_prefix("/"), "/")
        self.assertEqual(resolve_prefix("data/"), "/data")
        self.assertEqual(resolve_prefix("/data/../other/"), "/other")


class TestVolumeToMap(unittest.TestCase):
    def test_files_and_empty_dirs(self):
        volume = make_volume({"/a/b.txt": "hi", "/empty": None})
        volume_map = volume_to_map(volume)
        self.assertEqual(
            volume_map,
            {"/a/b.txt": FileEntry(b"hi"), "/empty": EmptyDirEntry()},
        )

    def test_nested_json(self):
        volume = volume_from_json({"/a": {"b.txt": "hi", "c": {}}})
        self.assertEqual(
            volume_to_map(volume),
            {"/a/b.txt": FileEntry(b"hi"), "/a/c": EmptyDirEntry()},
        )

    def test_relative_json_keys(self):
        volume = volume_from_json({"b.txt": "hi"}, cwd="/work")
        self.assertEqual(volume_to_map(volume), {"/work/b.txt": FileEntry(b"hi")})

    def test_symlink_target_unresolved(self):
        volume = make_volume({"/a.txt": "hi"}, symlinks={"/link": "a.txt"})
        volume_map = volume_to_map(volume)
        self.assertEqual(volume_map["/link"], SymlinkEntry("a.txt"))
        self.assertEqual(volume_map["/link"].kind, EntryKind.SYMLINK)

    def test_binary_content(self):
        volume = make_volume({"/blob.bin": BINARY_DATA})
        self.assertEqual(volume_to_map(volume)["/blob.bin"].data, BINARY_DATA)

    def test_exclude_content(self):
        volume = make_volume({"/a.txt": "hi"})
        self.assertEqual(
            volume_to_map(volume, include_content=False), {"/a.txt": FileEntry(b"")}
        )

    def test_empty_volume(self):
        self.assertEqual(volume_to_map(make_volume()), {})

    def test_empty_prefix_dir(self):
        volume = make_volume({"/data": None, "/other/a.txt": "a"})
        self.assertEqual(volume_to_map(volume, prefix="/data"), {})

    def test_prefix_rebased(self):
        volume = make_volume({"/data/a.txt": "a", "/other/b.txt": "b"})
        self.assertEqual(volume_to_map(volume, prefix="/data"), {"/a.txt": FileEntry(b"a")})
        self.assertEqual(volume_to_map(volume, prefix="data/"), {"/a.txt": FileEntry(b"a")})

    def test_missing_prefix(self):
        volume = make_volume({"/data/a.txt": "a"})
        self.assertEqual(volume_to_map(volume, prefix="/nosuch"), {})

    def test_idempotent(self):
        volume = make_volume(SRC_TREE, symlinks={"/latest": "/src"})
        self.assertEqual(volume_to_map(volume), volume_to_map(volume))

    def test_json_to_map(self):
        self.assertEqual(
            json_to_map({"/x/y": "1", "/z": None}),
            {"/x/y": FileEntry(b"1"), "/z": EmptyDirEntry()},
        )

    def test_volume_from_json_bad_value(self):
        with self.assertRaises(InvalidSourceError):
            volume_from_json({"/a": 1})

    def test_volume_from_map(self):
        volume_map = {
            "/a/b.txt": FileEntry(b"b"),
            "/a/link": SymlinkEntry("b.txt"),
            "/empty": EmptyDirEntry(),
        }
        self.assertEqual(volume_to_map(volume_from_map(volume_map)), volume_map)


class TestScanVolumePaths(unittest.TestCase):
    def test_scan(self):
        volume = make_volume(SRC_TREE, symlinks={"/latest": "/src"})
        self.assertEqual(
            scan_volume_paths(volume),
            [
                ("/latest", PathType.SYMLINK),
                ("/src", PathType.DIR),
                ("/src/index.ts", PathType.FILE),
                ("/src/utils", PathType.DIR),
                ("/src/utils/math.ts", PathType.FILE),
            ],
        )

    def test_scan_prefix_excludes_root(self):
        volume = make_volume(SRC_TREE)
        paths = [path for path, _ in scan_volume_paths(volume, prefix="/src/utils")]
        self.assertEqual(paths, ["/src/utils/math.ts"])

    def test_scan_missing_prefix(self):
        self.assertEqual(scan_volume_paths(make_volume(SRC_TREE), prefix="/nosuch"), [])


class TestDirToMap(TempDirMixin, unittest.TestCase):
    def test_dir_to_map(self):
        write_tree(
            self.tmpdir,
            {"/a/b.txt": "hi", "/empty": None, "/blob": BINARY_DATA},
            symlinks={"/a/link": "b.txt"},
        )
        self.assertEqual(
            dir_to_map(self.tmpdir, max_workers=2),
            {
                "/a/b.txt": FileEntry(b"hi"),
                "/a/link": SymlinkEntry("b.txt"),
                "/blob": FileEntry(BINARY_DATA),
                "/empty": EmptyDirEntry(),
            },
        )

    def test_dir_to_map_prefix(self):
        write_tree(self.tmpdir, {"/data/a.txt": "a", "/other/b.txt": "b"})
        self.assertEqual(
            dir_to_map(self.tmpdir, prefix="/data"), {"/a.txt": FileEntry(b"a")}
        )

    def test_dir_to_map_missing_prefix(self):
        self.assertEqual(dir_to_map(self.tmpdir, prefix="/nosuch"), {})

    def test_dir_to_map_empty(self):
        self.assertEqual(dir_to_map(self.tmpdir), {})

    def test_dir_to_map_nested_empty(self):
        write_tree(self.tmpdir, {"/a/b": None})
        self.assertEqual(dir_to_map(self.tmpdir), {"/a/b": EmptyDirEntry()})
        self.assertEqual(dir_to_map(self.tmpdir, prefix="/a/b"), {})

    def test_dir_matches_volume(self):
        write_tree(self.tmpdir, SRC_TREE, symlinks={"/latest": "/src"})
        volume = make_volume(SRC_TREE, symlinks={"/latest": "/src"})
        self.assertEqual(dir_to_map(self.tmpdir), volume_to_map(volume))

    def test_dir_to_map_idempotent(self):
        write_tree(self.tmpdir, {"/d%d/f%d" % (i, j): str(j) for i in range(5) for j in range(5)})
        self.assertEqual(dir_to_map(self.tmpdir), dir_to_map(self.tmpdir, max_workers=1))


class TestFlatten(TempDirMixin, unittest.TestCase):
    def test_source_kind(self):
        self.assertEqual(source_kind(FakeFilesystem()), SourceKind.VOLUME)
        self.assertEqual(source_kind({}), SourceKind.JSON)
        self.assertEqual(source_kind(self.tmpdir), SourceKind.DIRECTORY)

    def test_source_kind_invalid(self):
        for source in (None, 42, os.path.join(self.tmpdir, "nosuch"), ["/a"]):
            with self.assertRaises(InvalidSourceError):
                source_kind(source)

    def test_flatten_dispatch(self):
        write_tree(self.tmpdir, {"/a.txt": "a"})
        expected = {"/a.txt": FileEntry(b"a")}
        self.assertEqual(flatten(self.tmpdir), expected)
        self.assertEqual(flatten({"/a.txt": "a"}), expected)
        self.assertEqual(flatten(make_volume({"/a.txt": "a"})), expected)

    def test_flatten_invalid(self):
        with self.assertRaises(InvalidSourceError):
            flatten(3.14)
