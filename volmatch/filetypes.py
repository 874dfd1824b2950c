# Copyright Red Hat
#
# volmatch/filetypes.py - Volume matcher text/binary classification
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
"""
File type information support.

Classifies file content as text or binary so that mismatch reports can
show text verbatim and binary data as a digest and preview.
"""
from typing import ClassVar, Dict, Optional, Tuple
from pathlib import PurePosixPath
from enum import Enum
import logging

from ._volmatch import VOLMATCH_SUBSYSTEM_COMPARE

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_compare(msg, *args, **kwargs):
    """A wrapper for compare subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": VOLMATCH_SUBSYSTEM_COMPARE}, **kwargs)


#: Number of leading bytes examined when sniffing content.
SNIFF_SIZE = 8000

# Format: ".ext": ("mime/type", "description starting with lowercase")
TEXT_EXTENSION_MAP = {
    ".txt": ("text/plain", "plain text document"),
    ".text": ("text/plain", "plain text document"),
    ".md": ("text/markdown", "markdown documentation"),
    ".rst": ("text/x-rst", "reStructuredText document"),
    ".json": ("application/json", "json data file"),
    ".jsonl": ("application/x-jsonlines", "json lines data file"),
    ".xml": ("application/xml", "xml document"),
    ".yaml": ("application/yaml", "yaml configuration file"),
    ".yml": ("application/yaml", "yaml configuration file"),
    ".toml": ("application/toml", "toml configuration file"),
    ".ini": ("text/x-ini", "ini configuration file"),
    ".cfg": ("text/x-config", "configuration file"),
    ".conf": ("text/x-config", "configuration file"),
    ".env": ("text/x-env", "environment variable file"),
    ".csv": ("text/csv", "comma-separated values"),
    ".tsv": ("text/tab-separated-values", "tab-separated values"),
    ".log": ("text/x-log", "log file"),
    ".html": ("text/html", "html document"),
    ".htm": ("text/html", "html document"),
    ".css": ("text/css", "cascading style sheet"),
    ".scss": ("text/x-scss", "sass style sheet"),
    ".svg": ("image/svg+xml", "scalable vector graphics"),
    ".js": ("text/javascript", "javascript source code"),
    ".mjs": ("text/javascript", "modular javascript source code"),
    ".cjs": ("text/javascript", "commonjs source code"),
    ".jsx": ("text/jsx", "react jsx source code"),
    ".ts": ("application/typescript", "typescript source code"),
    ".tsx": ("application/typescript", "typescript jsx source code"),
    ".sh": ("application/x-sh", "shell script"),
    ".bash": ("application/x-sh", "bash script"),
    ".py": ("text/x-python", "python source code"),
    ".pyi": ("text/x-python", "python interface file"),
    ".rb": ("text/x-ruby", "ruby source code"),
    ".java": ("text/x-java-source", "java source code"),
    ".c": ("text/x-c", "c source code"),
    ".h": ("text/x-c", "c header file"),
    ".cpp": ("text/x-c++", "c++ source code"),
    ".go": ("text/x-go", "go source code"),
    ".rs": ("text/x-rust", "rust source code"),
    ".lua": ("text/x-lua", "lua script"),
    ".sql": ("application/sql", "sql script"),
    ".diff": ("text/x-diff", "diff output"),
    ".patch": ("text/x-diff", "patch file"),
}

TEXT_FILENAME_MAP = {
    "makefile": ("text/x-makefile", "makefile"),
    "dockerfile": ("text/x-dockerfile", "dockerfile"),
    "license": ("text/plain", "license text"),
    "readme": ("text/plain", "readme text"),
    ".gitignore": ("text/plain", "git ignore rules"),
    ".gitattributes": ("text/plain", "git attributes"),
    ".editorconfig": ("text/plain", "editor configuration"),
}

BINARY_EXTENSION_MAP = {
    ".bin": ("application/octet-stream", "binary data file"),
    ".exe": ("application/vnd.microsoft.portable-executable", "windows executable file"),
    ".o": ("application/x-object", "object file"),
    ".so": ("application/x-sharedlib", "shared library"),
    ".dll": ("application/x-msdownload", "dynamic link library"),
    ".class": ("application/java-vm", "java class file"),
    ".pyc": ("application/x-python-code", "compiled python bytecode"),
    ".wasm": ("application/wasm", "webassembly binary"),
    ".zip": ("application/zip", "zip archive"),
    ".tar": ("application/x-tar", "tar archive"),
    ".gz": ("application/gzip", "gzip compressed file"),
    ".tgz": ("application/gzip", "gzip compressed tar archive"),
    ".bz2": ("application/x-bzip2", "bzip2 compressed file"),
    ".xz": ("application/x-xz", "xz compressed file"),
    ".zst": ("application/zstd", "zstandard compressed file"),
    ".7z": ("application/x-7z-compressed", "7-zip archive"),
    ".png": ("image/png", "png image"),
    ".jpg": ("image/jpeg", "jpeg image"),
    ".jpeg": ("image/jpeg", "jpeg image"),
    ".gif": ("image/gif", "gif image"),
    ".webp": ("image/webp", "webp image"),
    ".ico": ("image/vnd.microsoft.icon", "icon image"),
    ".pdf": ("application/pdf", "pdf document"),
    ".mp3": ("audio/mpeg", "mp3 audio"),
    ".wav": ("audio/wav", "wave audio"),
    ".mp4": ("video/mp4", "mp4 video"),
    ".sqlite": ("application/vnd.sqlite3", "sqlite database"),
    ".db": ("application/vnd.sqlite3", "database file"),
    ".ttf": ("font/ttf", "truetype font"),
    ".otf": ("font/otf", "opentype font"),
    ".woff": ("font/woff", "web open font format"),
    ".woff2": ("font/woff2", "web open font format 2"),
}

BINARY_FILENAME_MAP = {
    "*.so.*": ("application/x-sharedlib", "versioned shared library"),
    "*.git/objects/*": ("application/x-git-object", "git internal object"),
    "*.git/index": ("application/x-git-index", "git index file"),
}


def _generic_guess_file(
    file_path: PurePosixPath,
    extension_map: Dict[str, Tuple[str, str]],
    filename_map: Dict[str, Tuple[str, str]],
    encoding: str,
) -> Optional[Tuple[str, str, str]]:
    """
    Attempt to guess a file's MIME type and description based on the file
    name and extension.

    :param file_path: The file path to check.
    :type file_path: ``PurePosixPath``
    :param extension_map: A map of ".extension": (mime_type, description)
                          tuples to use.
    :param filename_map: A map of "filename": (mime_type, description)
                         tuples to use.
    :returns: A 3-tuple containing (mime_type, description, encoding) if the
              type could be guessed or ``None`` otherwise.
    :rtype: ``Optional[Tuple[str, str, str]]``
    """
    lowered = PurePosixPath(str(file_path).lower())
    for file_name_pattern, guess in filename_map.items():
        if lowered.name == file_name_pattern or lowered.match(file_name_pattern):
            return (*guess, encoding)

    extension = lowered.suffix
    if extension and extension in extension_map:
        return (*extension_map[extension], encoding)

    return None


def _guess_file(file_path: PurePosixPath) -> Optional[Tuple[str, str, str]]:
    """
    Guess a file's MIME type from its name, checking binary types first.

    :param file_path: The file path to check.
    :type file_path: ``PurePosixPath``
    :returns: A (mime_type, description, encoding) tuple or ``None``.
    :rtype: ``Optional[Tuple[str, str, str]]``
    """
    guess = _generic_guess_file(
        file_path, BINARY_EXTENSION_MAP, BINARY_FILENAME_MAP, "binary"
    )
    if guess is not None:
        return guess
    return _generic_guess_file(file_path, TEXT_EXTENSION_MAP, TEXT_FILENAME_MAP, "utf-8")


def _sniff_content(data: bytes) -> Tuple[str, str, str]:
    """
    Classify ``data`` by inspecting its leading bytes.

    A NUL byte marks the content as binary. Otherwise content that decodes
    as UTF-8 is text. The sample may split a multi-byte sequence at its
    end, so a truncated trailing character is tolerated.

    :param data: The content to inspect.
    :type data: ``bytes``
    :returns: A (mime_type, description, encoding) tuple.
    :rtype: ``Tuple[str, str, str]``
    """
    sample = data[:SNIFF_SIZE]
    if b"\x00" in sample:
        return ("application/octet-stream", "binary data", "binary")
    try:
        sample.decode("utf-8")
    except UnicodeDecodeError as err:
        truncated = len(data) > SNIFF_SIZE and err.start >= len(sample) - 3
        if not truncated:
            return ("application/octet-stream", "binary data", "binary")
    return ("text/plain", "utf-8 text", "utf-8")


class FileTypeCategory(Enum):
    """
    Enum for file type categories.
    """

    TEXT = "text"
    BINARY = "binary"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    ARCHIVE = "archive"
    EXECUTABLE = "executable"
    CONFIG = "config"
    LOG = "log"
    DATABASE = "database"
    DOCUMENT = "document"
    SOURCE_CODE = "source_code"
    UNKNOWN = "unknown"


class FileTypeInfo:
    """
    Class representing file type information and encoding.
    """

    def __init__(
        self,
        mime_type: str,
        description: str,
        category: FileTypeCategory,
        encoding: Optional[str] = None,
    ):
        """
        Initialise a new ``FileTypeInfo`` object.

        :param mime_type: The detected MIME type.
        :type mime_type: ``str``
        :param description: Type description.
        :type description: ``str``
        :param category: File type category.
        :type category: ``FileTypeCategory``
        :param encoding: Optional file encoding.
        :type encoding: ``Optional[str]``
        """
        self.mime_type = mime_type
        self.description = description
        self.category = category
        self.encoding = encoding
        self.is_text_like = category in (
            FileTypeCategory.TEXT,
            FileTypeCategory.CONFIG,
            FileTypeCategory.LOG,
            FileTypeCategory.SOURCE_CODE,
        ) or (category == FileTypeCategory.DOCUMENT and mime_type.startswith("text/"))

    def __str__(self):
        return (
            f"MIME type: {self.mime_type}, "
            f"Category: {self.category.value}, "
            f"Encoding: {self.encoding if self.encoding else 'unknown'}, "
            f"Description: {self.description}"
        )


class FileTypeDetector:
    """
    Detect file types from names and content, optionally asking libmagic.
    """

    # fmt: off
    category_rules: ClassVar[Dict[str, FileTypeCategory]] = {
        "application/zip": FileTypeCategory.ARCHIVE,
        "application/x-tar": FileTypeCategory.ARCHIVE,
        "application/gzip": FileTypeCategory.ARCHIVE,
        "application/x-bzip2": FileTypeCategory.ARCHIVE,
        "application/x-xz": FileTypeCategory.ARCHIVE,
        "application/zstd": FileTypeCategory.ARCHIVE,
        "application/x-7z-compressed": FileTypeCategory.ARCHIVE,
        "application/x-executable": FileTypeCategory.EXECUTABLE,
        "application/x-sharedlib": FileTypeCategory.EXECUTABLE,
        "application/x-object": FileTypeCategory.EXECUTABLE,
        "application/vnd.microsoft.portable-executable": FileTypeCategory.EXECUTABLE,
        "application/x-msdownload": FileTypeCategory.EXECUTABLE,
        "application/pdf": FileTypeCategory.DOCUMENT,
        "text/markdown": FileTypeCategory.DOCUMENT,
        "text/x-rst": FileTypeCategory.DOCUMENT,
        "application/json": FileTypeCategory.CONFIG,
        "application/x-jsonlines": FileTypeCategory.CONFIG,
        "application/xml": FileTypeCategory.CONFIG,
        "application/yaml": FileTypeCategory.CONFIG,
        "application/toml": FileTypeCategory.CONFIG,
        "text/x-ini": FileTypeCategory.CONFIG,
        "text/x-config": FileTypeCategory.CONFIG,
        "text/x-env": FileTypeCategory.CONFIG,
        "text/x-log": FileTypeCategory.LOG,
        "application/vnd.sqlite3": FileTypeCategory.DATABASE,
        "application/javascript": FileTypeCategory.SOURCE_CODE,
        "application/typescript": FileTypeCategory.SOURCE_CODE,
        "application/x-sh": FileTypeCategory.SOURCE_CODE,
        "application/sql": FileTypeCategory.SOURCE_CODE,
        "image/svg+xml": FileTypeCategory.SOURCE_CODE,
        "text/": FileTypeCategory.TEXT,
        "image/": FileTypeCategory.IMAGE,
        "audio/": FileTypeCategory.AUDIO,
        "video/": FileTypeCategory.VIDEO,
        "font/": FileTypeCategory.BINARY,
    }
    # fmt: on

    def detect(self, path: str, data: bytes, use_magic: bool = False) -> FileTypeInfo:
        """
        Detect file type information for a file at ``path`` holding
        ``data``.

        :param path: The (volume) path of the file.
        :type path: ``str``
        :param data: The file content.
        :type data: ``bytes``
        :param use_magic: Ask libmagic for the MIME type of ``data``.
        :type use_magic: ``bool``
        :returns: File type information for the file.
        :rtype: ``FileTypeInfo``
        """
        file_path = PurePosixPath(path)
        if use_magic and data:
            info = self._detect_magic(file_path, data)
            if info is not None:
                return info

        guess = _guess_file(file_path)
        if guess is None:
            guess = _sniff_content(data)
        mime_type, description, encoding = guess
        return FileTypeInfo(
            mime_type, description, self._categorize_file(mime_type), encoding
        )

    def _detect_magic(
        self, file_path: PurePosixPath, data: bytes
    ) -> Optional[FileTypeInfo]:
        """
        Detect file type information for ``data`` using libmagic.

        :returns: File type information, or ``None`` if libmagic failed.
        :rtype: ``Optional[FileTypeInfo]``
        """
        # pylint: disable=import-outside-toplevel
        import magic

        # Some magic builds do not have magic.error
        if hasattr(magic, "error"):
            magic_errors = (magic.error, OSError, ValueError)
        else:
            magic_errors = (OSError, ValueError)

        try:
            fm = magic.detect_from_content(data[:SNIFF_SIZE])
        except magic_errors as err:
            _log_warn("Error detecting file type for %s: %s", str(file_path), err)
            return None

        _log_debug_compare("libmagic detected %s for %s", fm.mime_type, file_path)
        category = self._categorize_file(fm.mime_type)
        return FileTypeInfo(fm.mime_type, fm.name, category, fm.encoding)

    def _categorize_file(self, mime_type: str) -> FileTypeCategory:
        """
        Categorize file based on MIME type.

        :param mime_type: Detected file MIME type.
        :type mime_type: ``str``
        :returns: File type categorization.
        :rtype: ``FileTypeCategory``
        """
        mime_type = mime_type.lower()
        for pattern, category in self.category_rules.items():
            if mime_type.startswith(pattern):
                return category
        return FileTypeCategory.BINARY


_detector = FileTypeDetector()


def is_textual(path: str, data: bytes, use_magic: bool = False) -> bool:
    """
    Return ``True`` if the file at ``path`` with content ``data`` should be
    presented as text.

    :param path: The (volume) path of the file.
    :type path: ``str``
    :param data: The file content.
    :type data: ``bytes``
    :param use_magic: Ask libmagic for the MIME type of ``data``.
    :type use_magic: ``bool``
    :rtype: ``bool``
    """
    if not data:
        return True
    info = _detector.detect(path, data, use_magic=use_magic)
    _log_debug_compare("Classified %s as %s", path, info)
    return info.is_text_like


__all__ = [
    "FileTypeCategory",
    "FileTypeDetector",
    "FileTypeInfo",
    "is_textual",
]
