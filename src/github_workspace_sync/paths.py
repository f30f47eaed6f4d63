from typing import Annotated

from pydantic import AfterValidator

ROOT_PATH = "/"
SEPARATOR = "/"


def normalize_path(raw_path: str) -> str:
    """Normalize a workspace path to its canonical form.

    Canonical paths always start with a separator, never end with one (except for the root), contain no empty or `.`
    segments and never contain `..`.
    """

    segments: list[str] = []

    for segment in raw_path.split(SEPARATOR):
        if segment in ("", "."):
            continue

        if segment == "..":
            msg = f"Parent references are not allowed in workspace paths: {raw_path!r}"
            raise ValueError(msg)

        segments.append(segment)

    return SEPARATOR + SEPARATOR.join(segments)


WorkspacePath = Annotated[str, AfterValidator(normalize_path)]


def is_root(path: str) -> bool:
    return normalize_path(path) == ROOT_PATH


def path_segments(path: str) -> list[str]:
    return [segment for segment in normalize_path(path).split(SEPARATOR) if segment]


def path_depth(path: str) -> int:
    """The number of segments in the path. The root has a depth of 0."""
    return len(path_segments(path))


def parent_path(path: str) -> str:
    segments = path_segments(path)

    if not segments:
        return ROOT_PATH

    return SEPARATOR + SEPARATOR.join(segments[:-1])


def leaf_name(path: str) -> str:
    segments = path_segments(path)

    return segments[-1] if segments else ""


def join_path(parent: str, name: str) -> str:
    if not name or SEPARATOR in name or name in (".", ".."):
        msg = f"Invalid entry name: {name!r}"
        raise ValueError(msg)

    parent = normalize_path(parent)

    if parent == ROOT_PATH:
        return ROOT_PATH + name

    return f"{parent}{SEPARATOR}{name}"


def ancestor_paths(path: str) -> list[str]:
    """Every ancestor of the path, shallowest first, excluding the root and the path itself."""

    segments = path_segments(path)

    return [SEPARATOR + SEPARATOR.join(segments[:index]) for index in range(1, len(segments))]


def is_descendant(path: str, ancestor: str) -> bool:
    path = normalize_path(path)
    ancestor = normalize_path(ancestor)

    if ancestor == ROOT_PATH:
        return path != ROOT_PATH

    return path.startswith(ancestor + SEPARATOR)


def to_remote_path(path: str) -> str:
    """Convert a workspace path to the separator-less form the GitHub contents API expects."""
    return normalize_path(path).lstrip(SEPARATOR)


def from_remote_path(remote_path: str) -> str:
    return normalize_path(remote_path)
