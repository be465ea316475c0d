"""
Blob-хранилище файлов (StorageAdapter).

Назначение:
- загрузка оригинала по локатору
- сохранение производных файлов (thumbnails/, render/) под новым локатором
- локатор = относительный ключ внутри STORAGE_DIR

Ошибки:
- нет файла → NotFoundError (permanent)
- прочие I/O ошибки → TransientError (ретрай)
"""

from __future__ import annotations

import secrets
from pathlib import Path, PurePosixPath
from typing import Protocol

from attachment_pipeline.common.config import get_settings
from attachment_pipeline.common.errors import ErrCode, NotFoundError, TransientError
from attachment_pipeline.domain.enums import DerivedKind

_KIND_DIRS = {
    DerivedKind.thumbnail: "thumbnails",
    DerivedKind.render: "render",
}


class StorageAdapter(Protocol):
    def load_bytes(self, locator: str) -> bytes: ...

    def save_derived(self, data: bytes, suggested_name: str, kind: DerivedKind) -> str: ...

    def url_for(self, locator: str) -> str: ...


def _safe_name(name: str) -> str:
    base = PurePosixPath((name or "").replace("\\", "/")).name
    cleaned = "".join(ch if ch.isalnum() or ch in "._-" else "_" for ch in base).strip("._")
    return cleaned or "file"


class LocalBlobStorage:
    def __init__(self, base_dir: str | Path, *, public_base_url: str = "/files") -> None:
        self.base_dir = Path(base_dir).resolve()
        self.public_base_url = public_base_url.rstrip("/")

    def _key_to_path(self, key: str) -> Path:
        # защита от path traversal
        key = (key or "").lstrip("/")
        if not key or ".." in key.split("/"):
            raise NotFoundError("Некорректный локатор", details={"locator": key})
        return self.base_dir / key

    def put_bytes(self, key: str, data: bytes) -> str:
        """Сохранить bytes по ключу и вернуть ключ."""
        p = self._key_to_path(key)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
        except OSError as e:
            raise TransientError(
                "Не удалось сохранить файл", ErrCode.STORAGE_ERROR, {"locator": key, "err": str(e)[:200]}
            ) from e
        return key

    def load_bytes(self, locator: str) -> bytes:
        p = self._key_to_path(locator)
        try:
            return p.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError("Исходный файл не найден", details={"locator": locator}) from e
        except OSError as e:
            raise TransientError(
                "Не удалось прочитать файл",
                ErrCode.STORAGE_ERROR,
                {"locator": locator, "err": str(e)[:200]},
            ) from e

    def save_derived(self, data: bytes, suggested_name: str, kind: DerivedKind) -> str:
        # случайный префикс: одинаковые имена вложений не перетирают друг друга
        name = f"{secrets.token_hex(4)}_{_safe_name(suggested_name)}"
        return self.put_bytes(f"{_KIND_DIRS[DerivedKind(kind)]}/{name}", data)

    def url_for(self, locator: str) -> str:
        return f"{self.public_base_url}/{locator.lstrip('/')}"

    def exists(self, locator: str) -> bool:
        return self._key_to_path(locator).exists()

    def delete(self, locator: str) -> None:
        try:
            self._key_to_path(locator).unlink()
        except FileNotFoundError:
            pass


def build_storage() -> LocalBlobStorage:
    s = get_settings()
    return LocalBlobStorage(s.storage_dir, public_base_url=s.storage_public_base_url)
