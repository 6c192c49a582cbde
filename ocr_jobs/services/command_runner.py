"""
Запуск внешних программ (magick, tesseract, ldd ...) с журналированием.

Каждый запуск пайплайна создаёт собственный CommandRunner со своим
CommandHistory, поэтому параллельные задания не делят журнал.
"""

import logging
import subprocess
import time
from typing import Optional

from ocr_jobs.errors import CommandError
from ocr_jobs.schemas import CommandHistory, CommandRecord

logger = logging.getLogger(__name__)


class CommandRunner:
    """
    Выполняет внешние команды и пишет их в журнал задания.

    Args:
        history: журнал команд текущего запуска
        env: переменные окружения для дочерних процессов
        timeout: лимит времени одной команды в секундах (None — без лимита)
    """

    def __init__(
        self,
        history: Optional[CommandHistory] = None,
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ):
        self.history = history if history is not None else CommandHistory()
        self.env = env
        self.timeout = timeout

    def run(self, command: str, *arguments: str) -> str:
        """
        Запускает команду и возвращает объединённый stdout+stderr.

        Запись в журнал добавляется всегда, в том числе при ошибке.

        Args:
            command: имя или путь программы
            *arguments: аргументы командной строки

        Returns:
            str: объединённый вывод

        Raises:
            CommandError: ненулевой код возврата, отсутствие программы
                или превышение лимита времени
        """
        args = list(arguments)
        start = time.perf_counter()
        error: Optional[str] = None

        try:
            completed = subprocess.run(
                [command, *args],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=self.env,
                timeout=self.timeout,
                check=False,
            )
            output = completed.stdout.decode("utf-8", errors="replace")
            if completed.returncode != 0:
                error = f"exit status {completed.returncode}"
        except subprocess.TimeoutExpired as e:
            output = (e.output or b"").decode("utf-8", errors="replace")
            error = f"timed out after {self.timeout}s"
        except OSError as e:
            output = ""
            error = str(e)

        duration = time.perf_counter() - start
        record = CommandRecord(
            command=command,
            arguments=args,
            output=output,
            duration=f"{duration:0.3f}",
        )
        self.history.append(record)

        logger.info(
            f"command: [{command}]  arguments: [{' '.join(args)}]  "
            f"duration: [{record.duration}]"
        )

        if error is not None:
            raise CommandError(error, command=command, output=output)

        return output
