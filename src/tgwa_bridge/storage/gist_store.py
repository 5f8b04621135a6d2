"""
GitHub Gist Credential Store

Keeps the WhatsApp auth directory in a private gist so a redeployed
process can reconnect without scanning a new QR code.

Environment Variables:
    GITHUB_TOKEN: Token with gist scope
    GIST_ID: Id of the gist holding the auth files
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional, Union

import httpx

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
SAVE_DEBOUNCE_SECONDS = 2.5
REQUEST_TIMEOUT_SECONDS = 15.0


class GistCredentialStore:
    """
    Load/save the auth directory to a gist.

    Saves requested through schedule_save() are debounced: bursts of
    creds.update events collapse into one PATCH after a quiet period, and
    the most recent request wins. Failures are logged, never retried.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        gist_id: Optional[str] = None,
        api_url: str = GITHUB_API_URL,
        debounce_seconds: float = SAVE_DEBOUNCE_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token = token
        self.gist_id = gist_id
        self.api_url = api_url
        self.debounce_seconds = debounce_seconds
        self._client = client
        self._save_task: Optional[asyncio.Task] = None
        self._pending_dir: Optional[Path] = None

    @property
    def configured(self) -> bool:
        return bool(self.token and self.gist_id)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers={
                    "Authorization": f"token {self.token or ''}",
                    "Accept": "application/vnd.github+json",
                },
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        return self._client

    async def load(self, dest_dir: Union[str, Path]) -> bool:
        """
        Write the gist's files into dest_dir.

        Returns:
            True if at least one file was restored
        """
        if not self.configured:
            logger.warning("GITHUB_TOKEN/GIST_ID not set - skipping Gist load")
            return False

        dest_dir = Path(dest_dir)
        try:
            resp = await self._get_client().get(f"/gists/{self.gist_id}")
            resp.raise_for_status()
            files = resp.json().get("files") or {}
            if not files:
                logger.warning("Gist empty or missing files")
                return False

            dest_dir.mkdir(parents=True, exist_ok=True)
            for filename, file_obj in files.items():
                name = Path(filename).name
                if name != filename:
                    logger.warning(f"Skipping gist file with unsafe name: {filename!r}")
                    continue
                (dest_dir / name).write_text((file_obj or {}).get("content") or "", encoding="utf-8")

            logger.info(f"Session loaded from Gist into {dest_dir}")
            return True

        except Exception as e:
            logger.warning(f"Failed to load auth from Gist: {e}")
            return False

    async def save(self, src_dir: Union[str, Path]) -> None:
        """Upload every file in src_dir to the gist."""
        if not self.configured:
            logger.warning("GITHUB_TOKEN/GIST_ID not set - skipping Gist save")
            return

        src_dir = Path(src_dir)
        try:
            if not src_dir.exists():
                logger.warning("AUTH dir missing - nothing to save")
                return

            files: Dict[str, Dict[str, str]] = {}
            for path in sorted(src_dir.iterdir()):
                if path.is_file():
                    files[path.name] = {"content": path.read_text(encoding="utf-8")}

            if not files:
                logger.warning("No auth files to save")
                return

            resp = await self._get_client().patch(f"/gists/{self.gist_id}", json={"files": files})
            resp.raise_for_status()
            logger.info(f"Auth saved to Gist ({len(files)} files)")

        except Exception as e:
            logger.warning(f"Failed to save auth to Gist: {e}")

    def schedule_save(self, src_dir: Union[str, Path]) -> None:
        """Request a save after the quiet period, replacing any pending one."""
        self._pending_dir = Path(src_dir)
        if self._save_task and not self._save_task.done():
            self._save_task.cancel()
        self._save_task = asyncio.create_task(self._delayed_save())

    async def _delayed_save(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        src_dir, self._pending_dir = self._pending_dir, None
        self._save_task = None
        if src_dir is not None:
            await self.save(src_dir)

    @property
    def save_pending(self) -> bool:
        return self._save_task is not None and not self._save_task.done()

    async def flush(self) -> None:
        """Run a pending debounced save now (used at shutdown)."""
        if not self.save_pending:
            return
        self._save_task.cancel()
        self._save_task = None
        src_dir, self._pending_dir = self._pending_dir, None
        if src_dir is not None:
            await self.save(src_dir)

    async def close(self) -> None:
        await self.flush()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
