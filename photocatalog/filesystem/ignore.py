"""Names that are never catalogued or counted as images."""

from photocatalog.filesystem.paths import split_segments

IGNORED_NAMES = {
    "$RECYCLE.BIN",
    "SYSTEM VOLUME INFORMATION",
    ".TRASHES",
    ".SPOTLIGHT-V100",
    "RECYCLER",
    "$WINDOWS.~BT",
    "$WINDOWS.~WS",
    "RECOVERY",
    "MSOCACHE",
    "PERFLOGS",
    "WINDOWSIMAGEBACKUP",
    "CONFIG.MSI",
    "FOUND.000",
    "FOUND.001",
    "THUMBS.DB",
    "DESKTOP.INI",
}


def is_ignored_name(name: str | None) -> bool:
    """Hidden entries, temp and Office lock files (``~$``), and OS system folders."""
    if not name:
        return False
    if name.startswith(".") or name.startswith("~"):
        return True
    return name.upper() in IGNORED_NAMES


def is_ignored_path(path: str | None) -> bool:
    return any(is_ignored_name(segment) for segment in split_segments(path or ""))
