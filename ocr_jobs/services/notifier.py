"""
Уведомление о завершении задания по email.

Монитор опрашивает статус задания до терминального состояния
и отправляет письмо со ссылкой на результаты. Без OCRWS_SMTP_HOST
уведомление только пишется в лог.
"""

import logging
import smtplib
import time
from email.message import EmailMessage
from typing import Callable, Optional

from ocr_jobs.config import Settings
from ocr_jobs.schemas import JobStatus
from ocr_jobs.services.status import StatusService

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {JobStatus.COMPLETE, JobStatus.FAILED}


class Notifier:
    """
    Отправка уведомлений о завершении заданий.

    Args:
        status_service: источник статуса заданий
        settings: настройки (SMTP, интервал опроса, адрес сервиса)
        sleep: функция ожидания (для тестов)
    """

    def __init__(
        self,
        status_service: StatusService,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.status_service = status_service
        self.settings = settings
        self.sleep = sleep

    def monitor_and_notify(
        self, key: str, pid: str, email: str, query: str = ""
    ) -> Optional[JobStatus]:
        """
        Ждёт завершения задания и уведомляет адресата.

        Args:
            key: ключ задания
            pid: идентификатор документа
            email: адрес получателя
            query: параметры запроса для ссылки на результаты (unit, token)

        Returns:
            JobStatus: терминальный статус или None, если задание
                не завершилось за notify_max_wait_seconds
        """
        waited = 0.0

        while True:
            status = self.status_service.status(key).status

            if status in TERMINAL_STATUSES:
                self.send(email, pid, key, status, query)
                return status

            if status == JobStatus.UNKNOWN:
                logger.warning(f"Задание {key} исчезло во время ожидания, уведомление отменено")
                return None

            if waited >= self.settings.notify_max_wait_seconds:
                logger.warning(f"Задание {key} не завершилось за {waited:.0f}s, уведомление отменено")
                return None

            self.sleep(self.settings.notify_poll_seconds)
            waited += self.settings.notify_poll_seconds

    def send(
        self, email: str, pid: str, key: str, status: JobStatus, query: str = ""
    ) -> None:
        """Отправляет письмо о завершении задания."""
        download_url = f"{self.settings.service_url.rstrip('/')}/ocr/{pid}/download"
        if query:
            download_url = f"{download_url}?{query}"

        if status == JobStatus.COMPLETE:
            body = f"OCR results for {pid} are ready: {download_url}\n"
        else:
            body = (
                f"OCR for {pid} finished with errors. "
                f"Partial results: {download_url}\n"
            )

        if not self.settings.smtp_host:
            logger.info(f"Уведомление для {email} (SMTP не настроен): {body.strip()}")
            return

        message = EmailMessage()
        message["Subject"] = f"OCR {status.value}: {pid}"
        message["From"] = self.settings.smtp_sender
        message["To"] = email
        message.set_content(body)

        try:
            with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port) as smtp:
                smtp.send_message(message)
            logger.info(f"Уведомление отправлено: {email}, задание {key}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Не удалось отправить уведомление {email}: {e}")
