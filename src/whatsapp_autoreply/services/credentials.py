"""Credential store — tenant-scoped session directories on disk."""

from __future__ import annotations

import asyncio
import errno
import logging
import shutil
from pathlib import Path

from whatsapp_autoreply.config import settings

logger = logging.getLogger(__name__)


class CredentialStore:
    """Locates and removes the on-disk credentials of each tenant.

    Layout::

        <root>/session-<tenant>     current location
        <root>-<tenant>             legacy per-tenant root, still cleaned up
    """

    def __init__(
        self,
        root: str | Path | None = None,
        *,
        backoff_seconds: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.root = Path(root or settings.auth_data_path)
        self.backoff_seconds = (
            settings.credential_delete_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.max_retries = settings.credential_delete_max_retries if max_retries is None else max_retries

    def path_for(self, tenant_id: str) -> Path:
        return self.root / f"session-{tenant_id}"

    def legacy_path_for(self, tenant_id: str) -> Path:
        return self.root.with_name(f"{self.root.name}-{tenant_id}")

    async def delete(self, tenant_id: str) -> bool:
        """Remove every credential directory of *tenant_id*.

        Best effort: returns ``False`` if any directory could not be removed,
        never raises.
        """
        ok = True
        for path in (self.path_for(tenant_id), self.legacy_path_for(tenant_id)):
            ok = await self._delete_folder(tenant_id, path) and ok
        return ok

    async def _delete_folder(self, tenant_id: str, path: Path) -> bool:
        attempt = 0
        while True:
            try:
                if not path.exists():
                    return True
                logger.info("[%s] Deleting session folder: %s", tenant_id, path)
                await asyncio.to_thread(shutil.rmtree, path)
                logger.info("[%s] Deleted session folder: %s", tenant_id, path)
                return True
            except FileNotFoundError:
                return True
            except OSError as exc:
                if exc.errno != errno.EBUSY:
                    logger.error("[%s] Error deleting session folder %s: %s", tenant_id, path, exc)
                    return False
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(
                        "[%s] Session folder %s still busy after %d retries, giving up",
                        tenant_id,
                        path,
                        self.max_retries,
                    )
                    return False
                logger.warning(
                    "[%s] Resource busy, retrying deletion of %s (%d/%d)",
                    tenant_id,
                    path,
                    attempt,
                    self.max_retries,
                )
                await asyncio.sleep(self.backoff_seconds)
