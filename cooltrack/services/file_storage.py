from pathlib import Path
from typing import Protocol

from cooltrack.core.config import get_upload_base_url, get_upload_dir


class FileStorage(Protocol):
    def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes under `path` and return the public URL."""
        ...


class LocalFileStorage:
    """Writes uploads below a directory served at `base_url`."""

    def __init__(self, root=None, base_url=None):
        self.root = Path(root or get_upload_dir())
        self.base_url = (base_url or get_upload_base_url()).rstrip("/")

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Refusing to write outside upload root: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f"{self.base_url}/{path}"
