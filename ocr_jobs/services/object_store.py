"""
Хранилище объектов для исходных изображений и результатов OCR.

Бэкенды:
    - LocalObjectStore: каталог на диске, подкаталог на каждый бакет
    - S3ObjectStore: Amazon S3 через boto3

Ключи всегда разделены "/". Префикс задания считается существующим,
если под ним есть хотя бы один объект.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

import boto3
from boto3.exceptions import S3TransferFailedError, S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from ocr_jobs.errors import ObjectStoreError

logger = logging.getLogger(__name__)


def _under_prefix(key: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/")
    return key == prefix or key.startswith(prefix + "/")


class ObjectStore:
    """Интерфейс хранилища объектов."""

    def download(self, bucket: str, key: str, local_file: str) -> int:
        """Скачивает объект в локальный файл, возвращает размер в байтах."""
        raise NotImplementedError

    def upload(self, local_file: str, bucket: str, key: str) -> None:
        raise NotImplementedError

    def put_bytes(self, bucket: str, key: str, data: bytes) -> None:
        raise NotImplementedError

    def get_bytes(self, bucket: str, key: str) -> Optional[bytes]:
        """Содержимое объекта или None, если объекта нет."""
        raise NotImplementedError

    def list_keys(self, bucket: str, prefix: str) -> list[str]:
        """Все ключи под префиксом, отсортированные."""
        raise NotImplementedError

    def delete_prefix(self, bucket: str, prefix: str) -> int:
        """Удаляет все объекты под префиксом, возвращает их количество."""
        raise NotImplementedError

    def exists(self, bucket: str, prefix: str) -> bool:
        return bool(self.list_keys(bucket, prefix))


class LocalObjectStore(ObjectStore):
    """
    Файловое хранилище: <root>/<bucket>/<key>.

    Args:
        root: корневой каталог хранилища
    """

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, bucket: str, key: str) -> Path:
        return self.root / bucket / key

    def download(self, bucket: str, key: str, local_file: str) -> int:
        logger.info(f"Загрузка файла: {bucket}/{key} → {local_file}")
        try:
            shutil.copyfile(self._path(bucket, key), local_file)
        except OSError as e:
            raise ObjectStoreError(f"failed to download file: [{e}]") from e
        return os.path.getsize(local_file)

    def upload(self, local_file: str, bucket: str, key: str) -> None:
        logger.info(f"Выгрузка файла: {local_file} → {bucket}/{key}")
        target = self._path(bucket, key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".tmp")
            shutil.copyfile(local_file, tmp)
            tmp.replace(target)
        except OSError as e:
            raise ObjectStoreError(f"failed to upload file: [{e}]") from e

    def put_bytes(self, bucket: str, key: str, data: bytes) -> None:
        target = self._path(bucket, key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".tmp")
            tmp.write_bytes(data)
            tmp.replace(target)
        except OSError as e:
            raise ObjectStoreError(f"failed to write object: [{e}]") from e

    def get_bytes(self, bucket: str, key: str) -> Optional[bytes]:
        path = self._path(bucket, key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def list_keys(self, bucket: str, prefix: str) -> list[str]:
        base = self.root / bucket
        start = self._path(bucket, prefix.rstrip("/"))
        if start.is_file():
            return [prefix.rstrip("/")]
        if not start.is_dir():
            return []
        return sorted(
            p.relative_to(base).as_posix()
            for p in start.rglob("*")
            if p.is_file() and not p.name.endswith(".tmp")
        )

    def delete_prefix(self, bucket: str, prefix: str) -> int:
        keys = self.list_keys(bucket, prefix)
        start = self._path(bucket, prefix.rstrip("/"))
        if start.is_dir():
            shutil.rmtree(start)
        elif start.is_file():
            start.unlink()
        return len(keys)


class S3ObjectStore(ObjectStore):
    """
    Хранилище Amazon S3.

    Args:
        client: клиент boto3 (по умолчанию boto3.client("s3"))
    """

    def __init__(self, client=None):
        self.client = client or boto3.client("s3")

    def download(self, bucket: str, key: str, local_file: str) -> int:
        logger.info(f"downloading image: s3://{bucket}/{key} => {local_file}")
        try:
            self.client.download_file(bucket, key, local_file)
        except (BotoCoreError, ClientError, S3TransferFailedError) as e:
            raise ObjectStoreError(f"failed to download s3 file: [{e}]") from e
        return os.path.getsize(local_file)

    def upload(self, local_file: str, bucket: str, key: str) -> None:
        logger.info(f"uploading file: {local_file} => s3://{bucket}/{key}")
        try:
            self.client.upload_file(local_file, bucket, key)
        except (BotoCoreError, ClientError, S3UploadFailedError) as e:
            raise ObjectStoreError(f"failed to upload s3 file: [{e}]") from e

    def put_bytes(self, bucket: str, key: str, data: bytes) -> None:
        try:
            self.client.put_object(Bucket=bucket, Key=key, Body=data)
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"failed to write s3 object: [{e}]") from e

    def get_bytes(self, bucket: str, key: str) -> Optional[bytes]:
        try:
            obj = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise ObjectStoreError(f"failed to read s3 object: [{e}]") from e
        return obj["Body"].read()

    def list_keys(self, bucket: str, prefix: str) -> list[str]:
        paginator = self.client.get_paginator("list_objects_v2")
        keys = []
        try:
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix.rstrip("/")):
                for obj in page.get("Contents", []):
                    if _under_prefix(obj["Key"], prefix):
                        keys.append(obj["Key"])
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"failed to list s3 objects: [{e}]") from e
        return sorted(keys)

    def delete_prefix(self, bucket: str, prefix: str) -> int:
        keys = self.list_keys(bucket, prefix)
        # delete_objects принимает не более 1000 ключей за вызов
        for i in range(0, len(keys), 1000):
            batch = keys[i:i + 1000]
            try:
                self.client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": k} for k in batch]},
                )
            except (BotoCoreError, ClientError) as e:
                raise ObjectStoreError(f"failed to delete s3 objects: [{e}]") from e
        return len(keys)


def build_object_store(backend: str, storage_dir: str) -> ObjectStore:
    """
    Создаёт хранилище по имени бэкенда из настроек.

    Raises:
        ValueError: неизвестный бэкенд
    """
    backend = (backend or "local").strip().lower()
    if backend in {"local", "filesystem", "fs"}:
        return LocalObjectStore(storage_dir)
    if backend == "s3":
        return S3ObjectStore()
    raise ValueError(
        f"Неизвестный OCRWS_STORE_BACKEND={backend!r}. Поддерживаются: local, s3"
    )
