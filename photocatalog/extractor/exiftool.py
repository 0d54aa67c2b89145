"""Exiftool wrapper for metadata extraction."""

import json
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import BinaryIO


class ExiftoolNotFoundError(Exception):
    """Raised when exiftool is not installed."""


@dataclass
class ExiftoolResult:
    """Result from exiftool extraction."""

    metadata: dict
    error: str | None = None


class ExiftoolRunner:
    """Runs exiftool on image bytes piped through stdin."""

    EXIFTOOL_ARGS = ["-json", "-G0", "-n"]
    SPOOL_CHUNK_SIZE = 1024 * 1024

    def __init__(self, executable: str = "exiftool") -> None:
        self.executable = executable
        self.version = self._check_exiftool()

    def _check_exiftool(self) -> str:
        path = shutil.which(self.executable)
        if not path:
            raise ExiftoolNotFoundError(
                "exiftool is required but not found.\n"
                "Please install exiftool: https://exiftool.org/install.html"
            )

        result = subprocess.run(
            [self.executable, "-ver"],
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    def extract_stream(self, stream: BinaryIO) -> ExiftoolResult:
        """Extract metadata from the remaining bytes of a stream.

        The bytes are spooled to a temporary file in chunks and handed to
        exiftool as stdin, so the image is never held in memory whole.
        """
        cmd = [self.executable] + self.EXIFTOOL_ARGS + ["-"]

        try:
            with tempfile.TemporaryFile() as spool:
                shutil.copyfileobj(stream, spool, self.SPOOL_CHUNK_SIZE)
                spool.seek(0)
                result = subprocess.run(
                    cmd,
                    stdin=spool,
                    capture_output=True,
                    check=False,
                )
        except OSError as e:
            return ExiftoolResult({}, str(e))

        if result.returncode not in (0, 1):
            return ExiftoolResult({}, result.stderr.decode(errors="replace").strip())

        try:
            output = result.stdout.decode("utf-8", errors="replace")
            data_list = json.loads(output) if output.strip() else []
        except json.JSONDecodeError as e:
            return ExiftoolResult({}, f"JSON parse error: {e}")

        if not data_list:
            return ExiftoolResult({}, "No output from exiftool")

        metadata = data_list[0]
        error = metadata.get("ExifTool:Error")
        if error:
            return ExiftoolResult(metadata, str(error))
        return ExiftoolResult(metadata)
