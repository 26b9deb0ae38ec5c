"""Neptune tests package."""

import logging


def setup_test_logging():
    """Quiet third-party loggers during test runs.

    Neptune modules stay at INFO; LiteLLM, the HTTP stack and SQLAlchemy only
    report warnings.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    formatter = logging.Formatter("%(asctime)s - %(name)s:%(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.INFO)
    root_logger.addHandler(console_handler)

    for name in ("LiteLLM", "uvicorn", "fastapi", "httpx", "sqlalchemy", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("opentelemetry").setLevel(logging.CRITICAL)

    logging.getLogger("neptune").setLevel(logging.INFO)


setup_test_logging()
