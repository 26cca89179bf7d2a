"""Content-addressed cache for intermediate stage outputs."""

import hashlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

MANIFEST_NAME = ".nwpanim-cache.json"


def stage_key(input_path: Union[str, Path], params: Optional[dict] = None) -> str:
    """
    Compute the cache key of a stage output.

    The key is the SHA-256 of the input file contents followed by the
    canonical JSON of the stage parameters.

    Args:
        input_path: File the stage reads
        params: Parameters that change the stage output

    Returns:
        Hex digest
    """
    digest = hashlib.sha256()
    with open(input_path, "rb") as f:
        for block in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(block)
    digest.update(json.dumps(params or {}, sort_keys=True, default=str).encode("utf-8"))
    return digest.hexdigest()


class StageCache:
    """Manifest of output name -> key for one stage directory."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.manifest_path = self.directory / MANIFEST_NAME
        self._lock = threading.Lock()
        self._entries = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.manifest_path.exists():
            return {}
        try:
            with open(self.manifest_path, "r") as f:
                entries = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache manifest {self.manifest_path}: {e}")
            return {}
        if not isinstance(entries, dict):
            logger.warning(f"Ignoring malformed cache manifest {self.manifest_path}")
            return {}
        return entries

    def is_fresh(self, output: Union[str, Path], key: str) -> bool:
        """True when the output exists and was produced from the same key."""
        output = Path(output)
        with self._lock:
            stored = self._entries.get(output.name)
        return stored == key and output.exists()

    def record(self, output: Union[str, Path], key: str) -> None:
        """Store the key of a freshly written output."""
        with self._lock:
            self._entries[Path(output).name] = key
            self._write()

    def invalidate(self, output: Union[str, Path]) -> None:
        with self._lock:
            if self._entries.pop(Path(output).name, None) is not None:
                self._write()

    def _write(self) -> None:
        # Write to a temp file and rename so readers never see a partial manifest
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".manifest-")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self._entries, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.manifest_path)
        except BaseException:
            os.unlink(tmp_path)
            raise
