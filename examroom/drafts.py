"""Per-attempt answer drafts.

A draft is the in-progress mapping ``question_id -> DraftAnswer`` kept while
a student is taking an exam. It is a write-through recovery cache: every
recorded answer is persisted immediately so a reload (or a crashed browser)
resumes with the same answers, and it is cleared only after the submission
has been written to the database. The database rows stay authoritative.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, NamedTuple, Optional

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class AttemptKey(NamedTuple):
    """Identifies one attempt: the exam and the submission row for it."""

    exam_id: int
    submission_id: int

    @property
    def storage_name(self) -> str:
        return f"exam-{self.exam_id}-attempt-{self.submission_id}"


class DraftAnswer(BaseModel):
    text: Optional[str] = None
    image: Optional[str] = None  # data URL of the captured image

    @property
    def is_answered(self) -> bool:
        return bool(self.text or self.image)


Draft = Dict[int, DraftAnswer]


def _encode(draft: Draft) -> str:
    return json.dumps(
        {str(qid): answer.model_dump(exclude_none=True) for qid, answer in draft.items()}
    )


def _decode(raw: str) -> Draft:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("draft must be a JSON object")
    return {int(qid): DraftAnswer.model_validate(value) for qid, value in data.items()}


class DraftStore:
    """Base class holding the merge logic; subclasses persist raw JSON."""

    def _load(self, key: AttemptKey) -> Optional[str]:
        raise NotImplementedError

    def _save(self, key: AttemptKey, raw: str) -> None:
        raise NotImplementedError

    def _delete(self, key: AttemptKey) -> None:
        raise NotImplementedError

    def get(self, key: AttemptKey) -> Draft:
        raw = self._load(key)
        if not raw:
            return {}
        try:
            return _decode(raw)
        except (ValueError, ValidationError) as exc:
            # An unreadable draft is treated as empty; the attempt itself is intact.
            logger.warning("Ignoring unreadable draft %s: %s", key.storage_name, exc)
            return {}

    def set(self, key: AttemptKey, draft: Draft) -> None:
        self._save(key, _encode(draft))

    def record(
        self,
        key: AttemptKey,
        question_id: int,
        text: Optional[str] = None,
        image: Optional[str] = None,
    ) -> Draft:
        """Merge one answer into the stored draft and return the new draft."""
        draft = self.get(key)
        current = draft.get(question_id, DraftAnswer())
        update = {}
        if text is not None:
            update["text"] = text
        if image is not None:
            update["image"] = image
        draft[question_id] = current.model_copy(update=update)
        self.set(key, draft)
        return draft

    def clear(self, key: AttemptKey) -> None:
        self._delete(key)


class FileDraftStore(DraftStore):
    """Stores each attempt's draft as one JSON file under ``root``."""

    def __init__(self, root):
        self.root = Path(root)
        self._lock = threading.Lock()

    def _path(self, key: AttemptKey) -> Path:
        return self.root / f"{key.storage_name}.json"

    def _load(self, key):
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _save(self, key, raw):
        path = self._path(key)
        with self._lock:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(raw, encoding="utf-8")
            tmp.replace(path)

    def _delete(self, key):
        with self._lock:
            self._path(key).unlink(missing_ok=True)


class MemoryDraftStore(DraftStore):
    def __init__(self):
        self._data: Dict[str, str] = {}

    def _load(self, key):
        return self._data.get(key.storage_name)

    def _save(self, key, raw):
        self._data[key.storage_name] = raw

    def _delete(self, key):
        self._data.pop(key.storage_name, None)
