"""Data types produced by storage providers."""

from dataclasses import dataclass, field


@dataclass
class ParsedFilename:
    """Parsed components of a filename."""

    full: str
    base: str
    extension: str | None


@dataclass
class FileEntry:
    """A single listed file or directory, relative to the backend root."""

    name: str
    path: str
    size: int
    is_directory: bool
    modified_at_unix: float | None = None
    mime_type: str | None = None


@dataclass
class DirectoryTreeNode:
    """Recursive image-count summary of a directory."""

    name: str
    path: str
    image_count: int = 0
    total_image_count: int = 0
    children: list["DirectoryTreeNode"] = field(default_factory=list)

    def add_image(self) -> None:
        self.image_count += 1
        self.total_image_count += 1

    def add_child(self, child: "DirectoryTreeNode") -> None:
        self.children.append(child)
        self.total_image_count += child.total_image_count

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "imageCount": self.image_count,
            "totalImageCount": self.total_image_count,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class ConnectionTestResult:
    """Outcome of a provider connectivity check."""

    success: bool
    message: str
    duration_ms: int

    @classmethod
    def ok(cls, message: str, duration_ms: int) -> "ConnectionTestResult":
        return cls(success=True, message=message, duration_ms=duration_ms)

    @classmethod
    def failed(cls, message: str, duration_ms: int) -> "ConnectionTestResult":
        return cls(success=False, message=message, duration_ms=duration_ms)
