"""
OCR веб-сервис — асинхронное распознавание документов по PID.

Получает список страниц из Tracksys, нормализует каждое изображение
через ImageMagick, распознаёт через Tesseract и складывает
результаты в хранилище (каталог или S3).
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
