"""Output directory holding the artifacts of one issuance run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .errors import StoreError


logger = logging.getLogger(__name__)

SSL_CONF = "ssl.conf"
SERVER_KEY = "server.key"
SERVER_CSR = "server.csr"
SERVER_CRT = "server.crt"
CA_KEY = "ca.key"
CA_CRT = "ca.crt"
CA_SERIAL = "ca.srl"

SLOTS = (SSL_CONF, SERVER_KEY, SERVER_CSR, SERVER_CRT, CA_KEY, CA_CRT, CA_SERIAL)


@dataclass(frozen=True)
class ArtifactStore:
    """
    A directory with fixed, named artifact slots.

    Files are overwritten on every write; nothing is versioned and nothing is
    cleaned up when a run fails, so partial output stays available for
    inspection.
    """

    root: Path

    @classmethod
    def open(cls, root: str | Path) -> "ArtifactStore":
        path = Path(root)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"Cannot create output directory {path}: {exc}") from exc
        return cls(root=path)

    def path(self, slot: str) -> Path:
        if slot not in SLOTS:
            raise KeyError(f"Unknown artifact slot: {slot}")
        return self.root / slot

    def exists(self, slot: str) -> bool:
        return self.path(slot).is_file()

    def read(self, slot: str) -> bytes:
        return self.path(slot).read_bytes()

    def write(self, slot: str, data: bytes | str, private: bool = False) -> Path:
        target = self.path(slot)
        payload = data.encode("utf-8") if isinstance(data, str) else data
        try:
            target.write_bytes(payload)
            if private:
                target.chmod(0o600)
        except OSError as exc:
            raise StoreError(f"Cannot write {target}: {exc}") from exc
        logger.debug(f"Wrote {target} ({len(payload)} bytes)")
        return target
