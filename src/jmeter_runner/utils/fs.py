"""
jmeter-runner — filesystem helpers

File: src/jmeter_runner/utils/fs.py

Purpose
- Containment checks for archive entries and dashboard resources, guarded
  removal of run directories, dashboard sizing, and atomic report downloads.
"""

from __future__ import annotations

import os
import shutil
import stat
import tempfile
from contextlib import suppress
from pathlib import Path

PathLike = str | os.PathLike[str]


def lexically_contained(candidate: PathLike, root: PathLike) -> bool:
    """``True`` when normalized ``candidate`` lies under ``root``; neither has to exist."""
    base = os.path.normpath(os.path.abspath(root))
    path = os.path.normpath(os.path.abspath(candidate))
    return Path(path).is_relative_to(base)


def contained_path(candidate: PathLike, root: PathLike) -> bool:
    """Like ``lexically_contained`` but after following symlinks; missing paths fail."""
    try:
        base = Path(root).resolve(strict=True)
        path = Path(candidate).resolve(strict=True)
    except OSError:
        return False
    return base.is_dir() and path.is_relative_to(base)


def guarded_remove(target: PathLike, root: PathLike) -> None:
    """Remove ``target`` (file, tree or symlink) provided it sits inside ``root``.

    A symlink is removed itself; its destination is left alone.
    """
    base = Path(root).resolve(strict=True)
    path = Path(target)
    # Resolve the parent only so a symlinked leaf still counts as inside.
    located = path.parent.resolve(strict=True) / path.name
    if not located.is_relative_to(base):
        raise ValueError(f"refusing to delete path outside root: {path}")
    if path.is_symlink():
        path.unlink()
    elif not path.resolve(strict=True).is_relative_to(base):
        raise ValueError(f"refusing to delete path outside root: {path}")
    elif path.is_dir():
        shutil.rmtree(path)
    else:
        path.unlink()


def tree_size(root: PathLike) -> int:
    """Bytes held by regular files under ``root``; symlinks are not followed."""
    total = 0
    for directory, _, names in os.walk(root):
        for name in names:
            with suppress(OSError):
                info = os.lstat(os.path.join(directory, name))
                if stat.S_ISREG(info.st_mode):
                    total += info.st_size
    return total


def write_file_atomically(destination: PathLike, payload: bytes) -> None:
    """Write ``payload`` beside ``destination`` and rename it into place.

    Readers observe either the previous file or the complete new one.
    """
    target = Path(destination)
    folder = target.parent.resolve(strict=True)
    fd, scratch = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".part", dir=folder)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(scratch, target)
    except BaseException:
        Path(scratch).unlink(missing_ok=True)
        raise
    _sync_directory(folder)


def _sync_directory(folder: Path) -> None:
    if os.name == "nt":
        return
    try:
        fd = os.open(folder, os.O_RDONLY)
    except OSError:
        return
    try:
        with suppress(OSError):
            os.fsync(fd)
    finally:
        os.close(fd)


__all__ = [
    "contained_path",
    "guarded_remove",
    "lexically_contained",
    "tree_size",
    "write_file_atomically",
]
