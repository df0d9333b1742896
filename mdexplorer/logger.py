"""Logging configuration for MD Explorer."""

import logging
import sys
from pathlib import Path


def setup_logging(log_file: str | None = "log/mdexplorer.log", level: int = logging.INFO) -> None:
    """Setup logging to file and optionally stderr."""

    handlers: list[logging.Handler] = []

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="a", encoding="utf-8"))

    # `tree` prints a rich tree to stdout; keep stderr quiet for it
    if "tree" not in sys.argv:
        handlers.append(logging.StreamHandler())

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )

    # Suppress noisy third-party logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sse_starlette").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger("mdexplorer").setLevel(level)

    logging.info("=" * 60)
    if log_file:
        logging.info(f"MD Explorer logging started. Writing to {Path(log_file).expanduser().absolute()}")
    else:
        logging.info("MD Explorer logging started (stderr only)")
    logging.info("=" * 60)
