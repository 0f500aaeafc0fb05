# src/storage/bundles.py - v1
"""Zip bundle helpers for source snapshots and build outputs.

Source and build-output artifacts are zip archives, so a deploy action can
reference a single file inside one (``BuildOutput::Prod.template.json``).
"""

from __future__ import annotations

import io
import zipfile
from pathlib import Path, PurePosixPath

# Fixed timestamp so identical inputs zip to identical bytes.
_EPOCH = (1980, 1, 1, 0, 0, 0)


def zip_files(files: dict[str, bytes]) -> bytes:
    """Build a deterministic zip from an {archive_path: content} mapping."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for arcname in sorted(files):
            info = zipfile.ZipInfo(arcname, date_time=_EPOCH)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            zf.writestr(info, files[arcname])
    return buffer.getvalue()


def zip_directory(root: Path, exclude: set[str] | None = None) -> bytes:
    """Zip every regular file under ``root`` (paths relative to it)."""
    skip = exclude or {".git"}
    files: dict[str, bytes] = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if any(part in skip for part in rel.parts):
            continue
        if path.is_file():
            files[rel.as_posix()] = path.read_bytes()
    return zip_files(files)


def list_members(payload: bytes) -> list[str]:
    with zipfile.ZipFile(io.BytesIO(payload)) as zf:
        return sorted(n for n in zf.namelist() if not n.endswith("/"))


def read_member(payload: bytes, member: str) -> bytes:
    """Read one file from a zip payload.

    Raises:
        KeyError: If the member does not exist.
    """
    name = PurePosixPath(member).as_posix().lstrip("/")
    with zipfile.ZipFile(io.BytesIO(payload)) as zf:
        return zf.read(name)


def extract_to(payload: bytes, target: Path) -> None:
    """Extract a zip payload into ``target``, refusing paths that escape it."""
    target = target.resolve()
    with zipfile.ZipFile(io.BytesIO(payload)) as zf:
        for info in zf.infolist():
            dest = (target / info.filename).resolve()
            if dest != target and target not in dest.parents:
                raise ValueError(f"Archive member escapes target: {info.filename!r}")
        zf.extractall(target)
