"""
Ограниченный пул фоновых заданий.

Диспетчер кладёт сюда запуски пайплайна и мониторы уведомлений;
число одновременно выполняемых внешних команд ограничено max_workers.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Очередь заданий поверх ThreadPoolExecutor.

    Args:
        max_workers: максимум одновременно выполняемых пайплайнов
        max_monitors: максимум одновременно работающих мониторов уведомлений
    """

    def __init__(self, max_workers: int = 4, max_monitors: int = 4):
        self._workers = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ocr-worker"
        )
        # Мониторы ждут завершения заданий и не должны занимать воркеры
        self._monitors = ThreadPoolExecutor(
            max_workers=max_monitors, thread_name_prefix="ocr-monitor"
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Ставит запуск пайплайна в очередь."""
        return self._track(self._workers.submit(fn, *args), fn)

    def monitor(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Запускает фоновый монитор (ожидание завершения, уведомление)."""
        return self._track(self._monitors.submit(fn, *args), fn)

    def _track(self, future: Future, fn: Callable[..., Any]) -> Future:
        name = getattr(fn, "__qualname__", repr(fn))

        with self._lock:
            self._pending.add(future)

        def _done(f: Future) -> None:
            with self._lock:
                self._pending.discard(f)
            if not f.cancelled() and f.exception() is not None:
                logger.error(
                    f"Фоновое задание {name} завершилось с ошибкой",
                    exc_info=f.exception(),
                )

        future.add_done_callback(_done)
        return future

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Ждёт завершения всех поставленных заданий.

        Задания, поставленные во время ожидания (монитор после пайплайна),
        тоже учитываются.

        Returns:
            bool: True если очередь опустела за timeout
        """
        while True:
            with self._lock:
                pending = list(self._pending)
            if not pending:
                return True
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                return False

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        logger.info(f"Остановка очереди, незавершённых заданий: {self.pending()}")
        self._workers.shutdown(wait=wait_for_jobs)
        self._monitors.shutdown(wait=wait_for_jobs)
