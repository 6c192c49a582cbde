"""
Проверка и загрузка языковых файлов Tesseract (*.traineddata).

Алгоритм:
    1. Всегда добавляется osd (определение ориентации и письменности)
    2. Для каждого языка добавляется парная письменность из
       LANGUAGE_DEPENDENCIES (латиница/кириллица одного языка)
    3. Отсутствующие локально файлы скачиваются: сначала как язык,
       затем как письменность (script/). Если обе попытки неудачны —
       задание прерывается
"""

import logging
import os
import re
import shutil
import tempfile
from typing import Optional

import httpx

from ocr_jobs.errors import LanguageFetchError

logger = logging.getLogger(__name__)

# Язык, который нужен всегда
OSD_LANGUAGE = "osd"

# Языки, которым нужен файл парной письменности
LANGUAGE_DEPENDENCIES: dict[str, str] = {
    "aze": "aze_cyrl",
    "aze_cyrl": "aze",
    "uzb": "uzb_cyrl",
    "uzb_cyrl": "uzb",
}

# Код языка или письменности: имя файла <code>.traineddata
LANGUAGE_CODE = re.compile(r"^[A-Za-z0-9_]+$")


def split_languages(requested: str) -> list[str]:
    """Коды из строки вида "eng+deu", без пустых элементов."""
    return [lang.strip() for lang in (requested or "").split("+") if lang.strip()]


def invalid_languages(requested: str) -> list[str]:
    """Коды, которые не могут быть именем языкового файла."""
    return [lang for lang in split_languages(requested) if not LANGUAGE_CODE.fullmatch(lang)]


def expand_languages(requested: str) -> list[str]:
    """
    Раскрывает строку языков в полный список нужных файлов.

    Args:
        requested: языки через "+" (пустая строка допустима)

    Returns:
        list[str]: упорядоченный список без повторов, начиная с osd
    """
    languages = [OSD_LANGUAGE]

    for lang in split_languages(requested):
        for code in (lang, LANGUAGE_DEPENDENCIES.get(lang)):
            if code and code not in languages:
                languages.append(code)

    return languages


class LanguageResolver:
    """
    Гарантирует наличие языковых файлов в каталоге tessdata.

    Args:
        tessdata_dir: каталог с *.traineddata (TESSDATA_PREFIX)
        url_template: шаблон URL с полями {type}, {branch}, {script}, {lang}
        lang_type: вариант моделей (fast, best)
        lang_branch: ветка/тег репозитория tessdata
        client: HTTP клиент (для тестов можно передать клиент с MockTransport)
    """

    def __init__(
        self,
        tessdata_dir: str,
        url_template: str,
        lang_type: str = "fast",
        lang_branch: str = "4.0.0",
        client: Optional[httpx.Client] = None,
    ):
        self.tessdata_dir = tessdata_dir
        self.url_template = url_template
        self.lang_type = lang_type
        self.lang_branch = lang_branch
        self.client = client or httpx.Client(timeout=60.0, follow_redirects=True)

    def language_file(self, lang: str) -> str:
        if not LANGUAGE_CODE.fullmatch(lang):
            raise LanguageFetchError(f"invalid language code: [{lang}]")
        return os.path.join(self.tessdata_dir, f"{lang}.traineddata")

    def seed_from(self, source_dir: str) -> int:
        """
        Копирует в tessdata_dir языковые файлы, которых там ещё нет.

        Используется для файлов, поставляемых вместе с toolchain:
        такие языки не скачиваются.

        Args:
            source_dir: каталог с *.traineddata

        Returns:
            int: количество скопированных файлов
        """
        if not os.path.isdir(source_dir):
            logger.info(f"Каталог языков toolchain не найден: {source_dir}")
            return 0

        os.makedirs(self.tessdata_dir, exist_ok=True)

        copied = 0
        for name in sorted(os.listdir(source_dir)):
            source = os.path.join(source_dir, name)
            target = os.path.join(self.tessdata_dir, name)
            if not os.path.isfile(source) or os.path.exists(target):
                continue

            tmp_path = f"{target}.part"
            try:
                shutil.copy2(source, tmp_path)
                os.replace(tmp_path, target)
            except OSError as e:
                logger.error(f"Не удалось скопировать {source}: {e}")
                continue
            copied += 1

        logger.info(f"Языковые файлы из {source_dir}: скопировано {copied}")
        return copied

    def language_url(self, lang: str, script: bool = False) -> str:
        return self.url_template.format(
            type=self.lang_type,
            branch=self.lang_branch,
            script="script/" if script else "",
            lang=lang,
        )

    def ensure_languages(self, requested: str) -> list[str]:
        """
        Проверяет наличие всех нужных языков, скачивая недостающие.

        Args:
            requested: языки через "+"

        Returns:
            list[str]: полный список языков (см. expand_languages)

        Raises:
            LanguageFetchError: недопустимый код языка или файл не найден
                ни как язык, ни как письменность
        """
        languages = expand_languages(requested)
        lang_files = {lang: self.language_file(lang) for lang in languages}
        os.makedirs(self.tessdata_dir, exist_ok=True)

        for lang, lang_file in lang_files.items():
            if os.path.exists(lang_file):
                continue

            try:
                self._download(self.language_url(lang), lang_file)
                continue
            except LanguageFetchError as e:
                logger.info(f"Язык {lang} не найден, пробуем как письменность: {e}")

            # Ошибка второй попытки прерывает задание
            self._download(self.language_url(lang, script=True), lang_file)

        return languages

    def _download(self, url: str, filename: str) -> None:
        """
        Скачивает файл во временный файл и атомарно переименовывает.

        Параллельные задания могут скачивать один и тот же язык;
        переименование гарантирует, что читатели не увидят неполный файл.
        """
        logger.info(f"Загрузка языкового файла: [{url}]")

        try:
            with self.client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise LanguageFetchError(
                        f"failed to download language file: [{url}] "
                        f"({response.status_code})"
                    )

                fd, tmp_path = tempfile.mkstemp(
                    dir=os.path.dirname(filename), suffix=".part"
                )
                try:
                    with os.fdopen(fd, "wb") as f:
                        for chunk in response.iter_bytes():
                            f.write(chunk)
                    os.replace(tmp_path, filename)
                except BaseException:
                    os.unlink(tmp_path)
                    raise
        except httpx.HTTPError as e:
            raise LanguageFetchError(
                f"failed to download language file: [{url}] ({e})"
            ) from e
