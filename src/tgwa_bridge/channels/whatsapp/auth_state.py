"""
WhatsApp Auth State

Multi-file credential directory shared with the WhatsApp bridge process.
Identity keys live in creds.json; session/pre-key material in the other
JSON files. The bridge emits creds.update events with changed files and
they are written straight to disk here.
"""

import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

CREDS_FILE = "creds.json"


def _safe_name(name: str) -> Optional[str]:
    """Reject file names that would escape the auth directory."""
    candidate = Path(str(name)).name
    if not candidate or candidate != str(name) or candidate in (".", ".."):
        return None
    return candidate


class MultiFileAuthState:
    """In-memory view of the auth directory, written through on every change."""

    def __init__(self, folder: Union[str, Path]):
        self.folder = Path(folder)
        self.files: Dict[str, str] = {}

    @property
    def has_creds(self) -> bool:
        return CREDS_FILE in self.files

    def load(self) -> Dict[str, str]:
        """Read every file in the directory."""
        self.folder.mkdir(parents=True, exist_ok=True)
        self.files = {}
        for path in sorted(self.folder.iterdir()):
            if path.is_file():
                self.files[path.name] = path.read_text(encoding="utf-8")
        return self.files

    def update(self, files: Dict[str, Optional[str]]) -> List[str]:
        """
        Apply a creds.update payload.

        Args:
            files: file name -> new content, or None to delete the file

        Returns:
            Names of files written or removed
        """
        self.folder.mkdir(parents=True, exist_ok=True)
        changed = []
        for name, content in (files or {}).items():
            safe = _safe_name(name)
            if safe is None:
                logger.warning(f"Ignoring auth file with unsafe name: {name!r}")
                continue

            path = self.folder / safe
            if content is None:
                self.files.pop(safe, None)
                if path.exists():
                    path.unlink()
            else:
                self.files[safe] = str(content)
                path.write_text(str(content), encoding="utf-8")
            changed.append(safe)
        return changed

    def save_creds(self) -> None:
        """Write the full in-memory state to disk."""
        self.folder.mkdir(parents=True, exist_ok=True)
        for name, content in self.files.items():
            (self.folder / name).write_text(content, encoding="utf-8")


def use_multi_file_auth_state(folder: Union[str, Path]) -> MultiFileAuthState:
    """Materialize auth state from a directory, creating it if needed."""
    state = MultiFileAuthState(folder)
    state.load()
    logger.debug(f"Loaded {len(state.files)} auth files from {state.folder}")
    return state


def reset_auth_dir(folder: Union[str, Path]) -> None:
    """Wipe local auth material so the next connect needs a fresh QR."""
    folder = Path(folder)
    shutil.rmtree(folder, ignore_errors=True)
    folder.mkdir(parents=True, exist_ok=True)


def list_auth_files(folder: Union[str, Path]) -> Dict[str, object]:
    """Describe the auth directory for the control surface."""
    folder = Path(folder)
    if not folder.exists():
        return {"exists": False, "files": []}
    return {
        "exists": True,
        "files": sorted(p.name for p in folder.iterdir() if p.is_file()),
    }
