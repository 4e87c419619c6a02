"""
Archive type probing for legacy mod archives.

Legacy installations store archives as ``resources/mods/<sha>`` without a file
extension, so when the catalog does not declare a type the format has to be
sniffed from the file itself.
"""

from __future__ import annotations

import logging
import sys
import zipfile
from pathlib import Path

import py7zr
import rarfile

_log = logging.getLogger(__name__)

# UnRAR.exe: bundled next to a frozen build, under assets/ when run from source
if getattr(sys, "frozen", False):
    _unrar = Path(sys._MEIPASS) / "UnRAR.exe"
else:
    _unrar = Path(__file__).parent / "assets" / "UnRAR.exe"
if _unrar.exists():
    rarfile.UNRAR_TOOL = str(_unrar)

SUPPORTED_ARCHIVE_TYPES = ("zip", "7z", "rar")
DEFAULT_ARCHIVE_TYPE = "zip"


def detect_archive_type(filepath: Path) -> str | None:
    """Return ``"zip"``, ``"7z"`` or ``"rar"`` from the file header, or None."""
    filepath = Path(filepath)
    if not filepath.is_file():
        return None
    try:
        # 7z first: a self-extracting 7z can also carry a zip central directory
        if py7zr.is_7zfile(filepath):
            return "7z"
        if rarfile.is_rarfile(str(filepath)):
            return "rar"
        if zipfile.is_zipfile(filepath):
            return "zip"
    except OSError as exc:
        _log.warning("Could not probe archive type of %s: %s", filepath.name, exc)
    return None

