"""
Host to sandbox path translation.

Tool requests reference files by host paths (whatever the calling agent sees),
while tools run inside a sandbox where the workspace is mounted elsewhere.
``PathTranslator`` rewrites one into the other using an ordered list of
``MountMapping`` entries. Translation is pure string manipulation and never
touches the filesystem, so its output is usable as a cache key.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Iterable, Sequence

from tool_gateway.errors import PathOutsideWorkspaceError, PathTraversalError
from tool_gateway.types import FileKind, FileRef

__all__ = ["MountMapping", "PathTranslator", "classify_kind", "parse_mounts"]

IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp"})
CODE_EXTENSIONS = frozenset(
    {
        ".py", ".pyi", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".go", ".rs", ".java",
        ".kt", ".swift", ".c", ".h", ".cc", ".cpp", ".hpp", ".cs", ".rb", ".php",
        ".scala", ".sh", ".bash", ".sql", ".lua", ".r", ".m", ".dart", ".ex",
        ".exs", ".hs", ".toml", ".yaml", ".yml", ".json", ".xml", ".html", ".css",
        ".scss", ".md", ".rst", ".txt", ".ini", ".cfg",
    }
)


def _split(path: str) -> list[str]:
    return [part for part in path.split("/") if part]


@dataclass(frozen=True, slots=True)
class MountMapping:
    """One host root mounted at one sandbox root."""

    host_prefix: str
    sandbox_prefix: str

    def __post_init__(self) -> None:
        for prefix in (self.host_prefix, self.sandbox_prefix):
            if not prefix.startswith("/"):
                raise ValueError(f"Mount prefixes must be absolute: {prefix!r}")

    @property
    def host_parts(self) -> list[str]:
        return _split(self.host_prefix)

    @property
    def sandbox_parts(self) -> list[str]:
        return _split(self.sandbox_prefix)


def parse_mounts(value: str) -> tuple[MountMapping, ...]:
    """Parse ``host=sandbox`` pairs separated by ``;``."""
    mappings = []
    for entry in value.split(";"):
        entry = entry.strip()
        if not entry:
            continue
        host, sep, sandbox = entry.partition("=")
        if not sep or not host.strip() or not sandbox.strip():
            raise ValueError(f"Invalid mount mapping {entry!r}, expected host=sandbox")
        mappings.append(MountMapping(host.strip(), sandbox.strip()))
    return tuple(mappings)


def classify_kind(path: str) -> FileKind:
    ext = posixpath.splitext(path)[1].lower()
    if ext in IMAGE_EXTENSIONS:
        return FileKind.IMAGE
    if ext in CODE_EXTENSIONS:
        return FileKind.CODE
    return FileKind.OTHER


class PathTranslator:
    """Rewrite host-absolute paths into sandbox-visible paths, first match wins."""

    def __init__(self, mappings: Iterable[MountMapping]) -> None:
        self._mappings: tuple[MountMapping, ...] = tuple(mappings)

    @property
    def mappings(self) -> tuple[MountMapping, ...]:
        return self._mappings

    def translate(self, host_path: str) -> str:
        if not isinstance(host_path, str) or not host_path.startswith("/"):
            raise PathOutsideWorkspaceError(
                f"Path {host_path!r} must be absolute and inside a mounted workspace"
            )

        parts = _split(host_path)
        for mapping in self._mappings:
            root = mapping.host_parts
            if parts[: len(root)] == root:
                rest = self._normalize(parts[len(root):], host_path, mapping.host_prefix)
                return self._join(mapping.sandbox_parts, rest)

        # already-translated paths pass through, which keeps translate idempotent
        for mapping in self._mappings:
            root = mapping.sandbox_parts
            if parts[: len(root)] == root:
                rest = self._normalize(parts[len(root):], host_path, mapping.sandbox_prefix)
                return self._join(root, rest)

        raise PathOutsideWorkspaceError(
            f"Path {host_path!r} is not inside any mounted workspace"
        )

    def translate_file(self, host_path: str) -> FileRef:
        return FileRef(
            host_path=host_path,
            sandbox_path=self.translate(host_path),
            kind=classify_kind(host_path),
        )

    def translate_all(self, host_paths: Sequence[str]) -> list[FileRef]:
        return [self.translate_file(path) for path in host_paths]

    @staticmethod
    def _normalize(parts: Sequence[str], original: str, root: str) -> list[str]:
        resolved: list[str] = []
        for part in parts:
            if part == ".":
                continue
            if part == "..":
                if not resolved:
                    raise PathTraversalError(
                        f"Path {original!r} escapes its mounted root {root!r}"
                    )
                resolved.pop()
                continue
            resolved.append(part)
        return resolved

    @staticmethod
    def _join(root: Sequence[str], rest: Sequence[str]) -> str:
        return "/" + "/".join([*root, *rest])

    def __repr__(self) -> str:
        pairs = ", ".join(f"{m.host_prefix}->{m.sandbox_prefix}" for m in self._mappings)
        return f"{self.__class__.__name__}({pairs})"
