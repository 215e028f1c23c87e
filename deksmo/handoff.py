"""
Chapters handed over by a sibling process (the page grabber).

The grabber leaves a record under ``deksmo_pdf_import`` in a shared JSON
key-value file::

    {"deksmo_pdf_import": {"title": "...", "images": [{"src": url, "filename": name}, ...]}}

The key is removed before the chapter is created so a reload never imports
the same record twice.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigError
from .log import log_verbose, log_warning
from .model import Chapter, ChapterImage, ChapterStore, SourceHandle

HANDOFF_KEY = "deksmo_pdf_import"
DEFAULT_TITLE = "Grabber Export"


class JsonKeyValueStore:
    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path} does not hold a JSON object")
        return data

    def save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=4)
        os.replace(tmp_path, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self.load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self.load()
        data[key] = value
        self.save(data)

    def remove(self, key: str) -> None:
        data = self.load()
        if key in data:
            del data[key]
            self.save(data)


def chapter_from_handoff(record: Any) -> Optional[Chapter]:
    if not isinstance(record, dict) or not isinstance(record.get("images", []), list):
        raise ConfigError("Handoff record must be {title, images: [...]}")
    title = record.get("title")
    if not isinstance(title, str) or not title.strip():
        title = DEFAULT_TITLE

    images = []
    for idx, entry in enumerate(record.get("images") or []):
        src = entry.get("src") if isinstance(entry, dict) else None
        if not isinstance(src, str) or not src:
            log_warning(f"Handoff image {idx + 1} has no src; skipped")
            continue
        filename = entry.get("filename")
        if not isinstance(filename, str) or not filename:
            filename = f"image_{idx + 1:03d}"
        images.append(ChapterImage(name=filename, source=SourceHandle.from_url(src)))

    if not images:
        return None
    # Grabber order is the page order; no natural sort.
    return Chapter(name=title.strip(), images=images)


def take_handoff(kv: JsonKeyValueStore, store: ChapterStore) -> Optional[Chapter]:
    record = kv.get(HANDOFF_KEY)
    if record is None:
        return None
    kv.remove(HANDOFF_KEY)
    chapter = chapter_from_handoff(record)
    if chapter is None:
        log_verbose("  Handoff record had no images; nothing imported.")
        return None
    store.add_chapters([chapter])
    log_verbose(f"  Imported '{chapter.name}' ({len(chapter.images)} images) from handoff")
    return chapter


__all__ = [
    "DEFAULT_TITLE",
    "HANDOFF_KEY",
    "JsonKeyValueStore",
    "chapter_from_handoff",
    "take_handoff",
]
