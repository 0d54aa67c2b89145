"""Path helpers shared by all storage providers.

Backend-relative paths always use ``/`` as separator and never start or end
with one. The backend root itself is the empty string.
"""

from photocatalog.filesystem.models import ParsedFilename


def parse_filename(filename: str) -> ParsedFilename:
    if not filename:
        return ParsedFilename(full=filename, base=filename, extension=None)

    dot_index = filename.rfind(".")

    if dot_index <= 0 or dot_index == len(filename) - 1:
        return ParsedFilename(full=filename, base=filename.rstrip("."), extension=None)

    extension = filename[dot_index + 1 :].lower()
    base = filename[:dot_index]

    return ParsedFilename(full=filename, base=base, extension=extension)


def normalize_relative(path: str | None) -> str:
    if path is None:
        return ""
    normalized = path.strip().replace("\\", "/")
    return normalized.strip("/")


def join_relative(parent: str, name: str) -> str:
    parent = normalize_relative(parent)
    name = name.strip("/\\")
    return f"{parent}/{name}" if parent else name


def join_remote(root: str, relative: str) -> str:
    """Join a backend root (absolute on the server) with a relative path."""
    relative = normalize_relative(relative)
    root = root.rstrip("/") if root not in ("", "/") else root
    if not relative:
        return root or "/"
    if not root:
        return relative
    if root == "/":
        return f"/{relative}"
    return f"{root}/{relative}"


def file_name_of(path: str) -> str:
    normalized = normalize_relative(path)
    return normalized.rsplit("/", 1)[-1]


def split_segments(path: str) -> list[str]:
    return [part for part in normalize_relative(path).split("/") if part]
