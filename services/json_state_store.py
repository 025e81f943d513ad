"""Bounded JSON list persisted on disk with a small in-process cache."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence


class JsonStateStore:
    """Persist a short JSON list under ``root_key``, keeping only the newest ``max_items``."""

    def __init__(
        self,
        path: Path,
        root_key: str,
        *,
        max_items: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._path = Path(path)
        self._root_key = root_key
        self._max_items = max_items
        self._cache: Optional[List[Mapping[str, Any]]] = None
        self._cache_path: Optional[Path] = None
        self._logger = logger or logging.getLogger(__name__)

    def load(self, *, reload: bool = False) -> List[Mapping[str, Any]]:
        if reload or self._cache is None or self._cache_path != self._path:
            try:
                payload = json.loads(self._path.read_text(encoding="utf-8"))
                items = payload.get(self._root_key, [])
                if not isinstance(items, list):
                    raise ValueError("root is not a list")
            except FileNotFoundError:
                items = []
            except (OSError, json.JSONDecodeError, ValueError, AttributeError) as exc:
                self._logger.warning("Failed to load state from %s: %s", self._path, exc)
                items = []
            self._cache = [dict(item) for item in items if isinstance(item, Mapping)]
            self._cache_path = self._path

        return [dict(item) for item in self._cache]

    def store(self, items: Sequence[Mapping[str, Any]]) -> None:
        kept = list(items)
        if self._max_items is not None:
            kept = kept[-self._max_items:]
        payload = {self._root_key: [dict(item) for item in kept]}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        self._cache = [dict(item) for item in kept]
        self._cache_path = self._path

    def reset(self, *, path: Optional[Path] = None, max_items: Optional[int] = None) -> None:
        """Drop the cache; optionally repoint the file or change the retention window."""
        if path is not None:
            self._path = Path(path)
        if max_items is not None:
            self._max_items = max_items
        self._cache = None
        self._cache_path = None


__all__ = ["JsonStateStore"]
