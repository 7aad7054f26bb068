import logging
import os

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def build_logger(name="cropdoctor"):
    log = logging.getLogger(name)
    log.setLevel(logging.DEBUG)
    if log.handlers:
        return log

    fmt = logging.Formatter(LOG_FORMAT)

    # The log file keeps INFO and above; the console also shows DEBUG
    file_handler = logging.FileHandler(os.environ.get("LOG_FILE", "app.log"))
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(fmt)

    console = logging.StreamHandler()
    console.setLevel(os.environ.get("LOG_LEVEL", "DEBUG").upper())
    console.setFormatter(fmt)

    log.addHandler(file_handler)
    log.addHandler(console)
    return log


logger = build_logger()
