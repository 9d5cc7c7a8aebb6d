"""Filesystem object storage with public URLs.

Two buckets are used: one for images attached to questions and one for
students' captured answers. Objects are addressed by ``(bucket, key)`` where
the key may contain ``/`` separated segments.
"""

import logging
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

QUESTION_IMAGES = "question-images"
ANSWER_IMAGES = "answer-images"
BUCKETS = (QUESTION_IMAGES, ANSWER_IMAGES)


class StorageError(Exception):
    """Raised when an object cannot be stored."""


def answer_image_key(submission_id: int, question_id: int) -> str:
    return f"{submission_id}/{question_id}.jpg"


def question_image_key(exam_id: int, question_id: int, timestamp: int) -> str:
    return f"exam_{exam_id}/question_{question_id}_{timestamp}.jpg"


class LocalObjectStorage:
    def __init__(self, root, base_url: str = "/media"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _path_for(self, bucket: str, key: str) -> Path:
        if bucket not in BUCKETS:
            raise StorageError(f"Unknown bucket '{bucket}'")
        parts = PurePosixPath(key).parts
        if not parts or key.startswith("/") or any(p in ("..", ".") for p in parts):
            raise StorageError(f"Invalid object key '{key}'")
        return self.root.joinpath(bucket, *parts)

    def upload(self, bucket: str, key: str, data: bytes, upsert: bool = True) -> str:
        """Store ``data`` under ``bucket/key`` and return the key."""
        path = self._path_for(bucket, key)
        if path.exists() and not upsert:
            raise StorageError(f"Object '{bucket}/{key}' already exists")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".part")
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as exc:
            raise StorageError(f"Could not store '{bucket}/{key}': {exc}") from exc
        logger.debug("Stored %s/%s (%d bytes)", bucket, key, len(data))
        return key

    def public_url(self, bucket: str, key: str) -> str:
        self._path_for(bucket, key)
        return f"{self.base_url}/{bucket}/{key}"

    def read(self, bucket: str, key: str) -> bytes:
        try:
            return self._path_for(bucket, key).read_bytes()
        except OSError as exc:
            raise StorageError(f"Could not read '{bucket}/{key}': {exc}") from exc
