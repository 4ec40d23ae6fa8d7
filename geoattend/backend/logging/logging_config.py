import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_FORMAT = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", log_dir: Optional[str] = "logs"):
    """
    Uygulama genelinde kullanılacak olan merkezi loglama yapılandırmasını kurar.

    Logları her zaman konsola yazar. `log_dir` verilmişse ayrıca belirli bir
    boyuta ulaştığında dönen bir dosyaya (üretim ortamı için) yazar. Denetim
    kaydı (audit) veritabanına yazılamadığında düşülen yedek kanal da budur.
    """
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    # Uvicorn gibi kütüphanelerin varsayılan handler'larını temizleyerek
    # kendi standart formatımızı zorunlu kılıyoruz.
    if logger.hasHandlers():
        logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(stdout_handler)

    if log_dir:
        # Docker volume ile bu klasör sunucudaki kalıcı bir dizine bağlanır.
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path / "app.log",
            maxBytes=5*1024*1024,  # 5 MB
            backupCount=5
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)
