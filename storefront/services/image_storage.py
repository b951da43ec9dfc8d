"""Хранилище изображений-подтверждений оплаты."""
import logging
import uuid
from pathlib import Path

from fastapi import UploadFile

from storefront.config import settings
from storefront.core.exceptions import BadRequestError

logger = logging.getLogger(__name__)

# Разрешенные типы изображений
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

# Путь, по которому main.py раздает загруженные файлы
PUBLIC_PREFIX = "/uploads"


class ImageStorageService:
    """Сохраняет изображения на диск и возвращает публичный URL."""

    def __init__(self, upload_dir: str | Path | None = None, max_size: int | None = None):
        self.upload_dir = Path(upload_dir or settings.upload_dir)
        self.max_size = max_size or settings.max_upload_size

    async def upload(self, file: UploadFile) -> str:
        """
        Сохранить файл.

        Raises:
            BadRequestError: неподдерживаемый тип или слишком большой файл
        """
        if file.content_type not in ALLOWED_IMAGE_TYPES:
            logger.warning(f"Invalid file type: {file.content_type}")
            raise BadRequestError(
                f"Неподдерживаемый тип файла. Разрешенные типы: {', '.join(sorted(ALLOWED_IMAGE_TYPES))}"
            )

        contents = await file.read()
        if not contents:
            raise BadRequestError("Файл пустой")

        if len(contents) > self.max_size:
            logger.warning(f"File too large: {len(contents)} bytes")
            raise BadRequestError(
                f"Файл слишком большой. Максимальный размер: {self.max_size / 1024 / 1024} MB"
            )

        # Расширение только по проверенному типу, имя файла от клиента не используется
        file_extension = EXTENSIONS[file.content_type]

        self.upload_dir.mkdir(parents=True, exist_ok=True)
        unique_filename = f"{uuid.uuid4()}{file_extension}"
        file_path = self.upload_dir / unique_filename

        with open(file_path, "wb") as f:
            f.write(contents)

        logger.info(f"Proof image saved: {file_path} ({len(contents)} bytes)")
        return f"{PUBLIC_PREFIX}/{unique_filename}"


def get_image_storage() -> ImageStorageService:
    """Dependency для получения хранилища изображений."""
    return ImageStorageService()
