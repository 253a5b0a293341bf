from __future__ import annotations

import re
import shutil
from datetime import UTC, datetime
from pathlib import Path

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]+")


class ArtifactManager:
    """Creates and manages engine artifact files."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.dom_root = self.root / "dom_snapshots"
        self.screenshot_root = self.root / "screenshots"
        self._ensure_structure()

    def _ensure_structure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.dom_root.mkdir(parents=True, exist_ok=True)
        self.screenshot_root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def timestamp() -> str:
        return datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")

    @staticmethod
    def safe_name(name: str) -> str:
        return _UNSAFE_NAME.sub("_", name).strip("_") or "unnamed"

    def write_html_snapshot(self, name: str, html: str, timestamp: str | None = None) -> Path:
        stamp = timestamp or self.timestamp()
        path = self.dom_root / f"{stamp}_{self.safe_name(name)}.html"
        path.write_text(html, encoding="utf-8")
        return path

    def screenshot_path(self, name: str, timestamp: str | None = None) -> Path:
        stamp = timestamp or self.timestamp()
        return self.screenshot_root / f"{stamp}_{self.safe_name(name)}.png"

    def write_screenshot(self, name: str, image: bytes, timestamp: str | None = None) -> Path:
        path = self.screenshot_path(name, timestamp)
        path.write_bytes(image)
        return path

    def reset(self) -> Path:
        self._ensure_structure()
        for child in self.root.iterdir():
            if child.is_file() and child.name != ".gitkeep":
                child.unlink()
        for directory in (self.dom_root, self.screenshot_root):
            self._clear_directory(directory)
        return self.root

    @staticmethod
    def _clear_directory(directory: Path) -> None:
        for child in directory.iterdir():
            if child.is_dir():
                shutil.rmtree(child)
            elif child.is_file() and child.name != ".gitkeep":
                child.unlink()
