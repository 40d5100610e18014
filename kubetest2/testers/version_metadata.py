"""Recording a tester's version in the run's metadata.json."""

from __future__ import annotations

import os

from .. import artifacts
from ..metadata import CustomJSON


def write_version_to_metadata(version: str) -> None:
    """Add ``tester-version`` to metadata.json in the artifacts directory.

    Existing entries are kept; a tester version already present is an error.
    """
    path = os.path.join(artifacts.base_dir(), "metadata.json")
    if os.path.exists(path):
        with open(path, encoding="utf-8") as existing:
            meta = CustomJSON.load(existing)
    else:
        meta = CustomJSON()

    meta.add("tester-version", version)

    with open(path, "w", encoding="utf-8") as out:
        meta.write(out)
        out.flush()
        os.fsync(out.fileno())