import asyncio
import os
import re
import tempfile
from pathlib import Path

import structlog

from trufflepay.errors import ValidationError

logger = structlog.get_logger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def asset_name(invoice_id: str, extension: str) -> str:
    """
    File name for an invoice's asset.

    Ids made of letters, digits, ``_`` and ``-`` are used as-is; any other id
    (punctuation, spaces, non-ASCII) is hex-encoded under a distinct prefix so
    every valid invoice id maps to a servable, collision-free name.
    """
    if _SAFE_ID.match(invoice_id):
        return f"asset_{invoice_id}.{extension}"
    return f"assetx_{invoice_id.encode('utf-8').hex()}.{extension}"


class LocalAssetStore:
    """Generated assets on local disk, served under ``/assets/{name}``."""

    def __init__(self, root: str | Path, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def path_for(self, name: str) -> Path:
        if not _SAFE_NAME.match(name) or ".." in name:
            raise ValidationError(f"Invalid asset name: {name}")
        return self.root / name

    def url_for(self, name: str) -> str:
        return f"{self.public_base_url}/assets/{name}"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    async def save(self, name: str, content: bytes) -> str:
        path = self.path_for(name)
        await asyncio.to_thread(self._write_atomic, path, content)
        logger.info("asset_saved", name=name, size=len(content))
        return self.url_for(name)

    @staticmethod
    def _write_atomic(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
