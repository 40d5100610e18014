"""File system helpers."""

from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path


def copy_file(src: str | os.PathLike, dst: str | os.PathLike) -> None:
    """Copy ``src`` to ``dst``, creating parent directories as needed.

    A newly created destination gets the source's permission bits.
    """
    info = os.stat(src)
    with open(src, "rb") as source:
        Path(dst).parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(dst, os.O_RDWR | os.O_CREAT | os.O_TRUNC, stat.S_IMODE(info.st_mode))
        with os.fdopen(fd, "wb") as target:
            shutil.copyfileobj(source, target)
            target.flush()
            os.fsync(target.fileno())