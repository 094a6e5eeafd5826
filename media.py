import os
import shutil
from dataclasses import dataclass
from typing import BinaryIO, Optional, Protocol

import structlog
from bson import ObjectId

from errors import StoreFailure, ValidationFailed

logger = structlog.get_logger()

VIDEO_FOLDER = "videos"
THUMBNAIL_FOLDER = "thumbnails"

_DEFAULT_EXT = {VIDEO_FOLDER: ".mp4", THUMBNAIL_FOLDER: ".jpg"}


class Upload(Protocol):
    filename: Optional[str]
    file: BinaryIO


@dataclass
class MediaDescriptor:
    url: str
    storage_id: str
    duration: Optional[float] = None

    def ref(self) -> dict:
        return {"url": self.url, "storage_id": self.storage_id}


class MediaStorage(Protocol):
    def store(self, upload: Upload, folder: str) -> MediaDescriptor: ...

    def delete(self, storage_id: Optional[str]) -> None: ...


class LocalMediaStorage:
    """Keeps uploads on local disk, served under ``static_url``.

    The storage id is the path relative to ``upload_dir``.
    """

    def __init__(self, upload_dir: str, static_url: str = "/static"):
        self.upload_dir = os.path.abspath(upload_dir)
        self.static_url = static_url.rstrip("/")
        for folder in (VIDEO_FOLDER, THUMBNAIL_FOLDER):
            os.makedirs(os.path.join(self.upload_dir, folder), exist_ok=True)

    def store(self, upload: Upload, folder: str) -> MediaDescriptor:
        if upload is None or not upload.filename:
            raise ValidationFailed(f"A {folder[:-1]} file is required")
        ext = os.path.splitext(upload.filename)[1] or _DEFAULT_EXT.get(folder, "")
        storage_id = f"{folder}/{ObjectId()}{ext}"
        path = self.path_for(storage_id)
        try:
            with open(path, "wb") as f:
                shutil.copyfileobj(upload.file, f)
        except OSError as e:
            raise StoreFailure(f"Could not store {folder[:-1]} file") from e
        logger.info("Media stored", storage_id=storage_id)
        return MediaDescriptor(url=f"{self.static_url}/{storage_id}", storage_id=storage_id)

    def delete(self, storage_id: Optional[str]) -> None:
        if not storage_id:
            return
        path = os.path.abspath(self.path_for(storage_id))
        if not path.startswith(self.upload_dir + os.sep):
            raise ValidationFailed("Invalid storage id")
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.info("Media already absent", storage_id=storage_id)
            return
        except OSError as e:
            raise StoreFailure("Error while deleting file") from e
        logger.info("Media deleted", storage_id=storage_id)

    def path_for(self, storage_id: str) -> str:
        return os.path.join(self.upload_dir, storage_id)
