"""Zip archival of the staged build directory."""

import io
import zipfile
from pathlib import Path
from typing import List


class ZipArchive:
    """Accumulates files into an in-memory zip archive.

    A new instance must be used for every build. Entries are never shared between
    archives.
    """

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED):
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, mode="w", compression=compression)
        self._closed = False
        self.entries: List[str] = []

    def add_file(self, path: Path, arcname: str) -> None:
        if self._closed:
            raise ValueError("Cannot add files to a closed archive")
        # ZipFile.write keeps the file mode bits, so executables stay executable
        self._zip.write(path, arcname=arcname)
        self.entries.append(arcname)

    def add_directory(self, root: Path) -> "ZipArchive":
        """Add every non-directory file under `root`, stored under its relative POSIX path."""
        for path in sorted(root.rglob("*")):
            if path.is_dir():
                continue
            self.add_file(path, path.relative_to(root).as_posix())
        return self

    def to_bytes(self) -> bytes:
        if not self._closed:
            self._zip.close()
            self._closed = True
        return self._buffer.getvalue()


def archive_directory(root: Path) -> bytes:
    return ZipArchive().add_directory(root).to_bytes()
