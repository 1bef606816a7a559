"""
File policy helpers: which paths are ignored, which files keep metadata
only, language detection and line counting.
"""

import re
from pathlib import PurePosixPath
from typing import Optional

from syncengine.config import Config

BINARY_EXTENSIONS = frozenset({
    # Images
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".bmp", ".webp", ".svg", ".avif",
    # Fonts
    ".woff", ".woff2", ".ttf", ".eot", ".otf",
    # Audio/Video
    ".mp3", ".mp4", ".wav", ".ogg", ".webm", ".avi", ".mov", ".flv",
    # Archives
    ".zip", ".tar", ".gz", ".bz2", ".7z", ".rar", ".xz",
    # Documents
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    # Executables
    ".exe", ".dll", ".so", ".dylib", ".bin",
    # Other binary
    ".wasm", ".pyc", ".pyo", ".class",
})

LOCK_FILES = frozenset({
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "Cargo.lock",
    "Gemfile.lock",
    "poetry.lock",
    "composer.lock",
    "Pipfile.lock",
})

GENERATED_PATTERNS = [
    re.compile(r"\.min\.js$"),
    re.compile(r"\.min\.css$"),
    re.compile(r"\.map$"),
    re.compile(r"\.bundle\.js$"),
    re.compile(r"-bundle\.js$"),
]

IGNORED_DIRS = frozenset({
    "node_modules",
    ".git",
    "vendor",
    "dist",
    "build",
    ".next",
    ".nuxt",
    ".output",
    "__pycache__",
    ".cache",
    "coverage",
    ".turbo",
    ".vercel",
})

LANGUAGE_MAP = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".rb": "ruby",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".swift": "swift",
    ".c": "c",
    ".cpp": "cpp",
    ".h": "c",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".php": "php",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".sass": "sass",
    ".less": "less",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".xml": "xml",
    ".md": "markdown",
    ".sql": "sql",
    ".sh": "shell",
    ".bash": "shell",
    ".zsh": "shell",
    ".fish": "shell",
    ".ps1": "powershell",
    ".dockerfile": "dockerfile",
    ".graphql": "graphql",
    ".gql": "graphql",
    ".vue": "vue",
    ".svelte": "svelte",
    ".elm": "elm",
    ".ex": "elixir",
    ".exs": "elixir",
    ".erl": "erlang",
    ".hs": "haskell",
    ".ml": "ocaml",
    ".scala": "scala",
    ".clj": "clojure",
    ".r": "r",
    ".lua": "lua",
    ".perl": "perl",
    ".pl": "perl",
    ".toml": "toml",
    ".ini": "ini",
    ".prisma": "prisma",
}

# Skip reasons recorded on FileRecord.skipped_reason
TOO_LARGE = "too_large"
IGNORED_DIRECTORY = "ignored_directory"
LOCK_FILE = "lock_file"
BINARY_EXTENSION = "binary_extension"
GENERATED_FILE = "generated_file"
SKIP_CONTENT = "skip_content"
CONTENT_LIMIT = "content_limit"


def get_extension(file_name: str) -> Optional[str]:
    """Lowercase extension with the dot, or None (dotfiles have none)."""
    last_dot = file_name.rfind(".")
    if last_dot <= 0:
        return None
    return file_name[last_dot:].lower()


def should_ignore_path(path: str) -> bool:
    """True if any path segment is an ignored directory."""
    return any(part in IGNORED_DIRS for part in path.split("/"))


def check_file(path: str, size: int, max_file_size: Optional[int] = None) -> Optional[str]:
    """
    Decide whether a file's content should be skipped.

    Args:
        path: Repository-relative path.
        size: Blob size in bytes.
        max_file_size: Size limit; defaults to MAX_FILE_SIZE_BYTES.

    Returns:
        The skip reason, or None if the content should be fetched.
    """
    limit = Config.MAX_FILE_SIZE_BYTES if max_file_size is None else max_file_size
    if size > limit:
        return TOO_LARGE

    if should_ignore_path(path):
        return IGNORED_DIRECTORY

    file_name = PurePosixPath(path).name
    if file_name in LOCK_FILES:
        return LOCK_FILE

    ext = get_extension(file_name)
    if ext and ext in BINARY_EXTENSIONS:
        return BINARY_EXTENSION

    if any(pattern.search(file_name) for pattern in GENERATED_PATTERNS):
        return GENERATED_FILE

    return None


def detect_language(path: str) -> Optional[str]:
    ext = get_extension(PurePosixPath(path).name)
    return LANGUAGE_MAP.get(ext) if ext else None


def count_lines(content: Optional[str]) -> int:
    # "a\nb" and "a\nb\n" count as 2 and 3, matching a newline split
    if not content:
        return 0
    return content.count("\n") + 1
