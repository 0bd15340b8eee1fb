from __future__ import annotations

import logging
import os
import shutil
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter
from typing import IO, Iterator


LOGGER_NAME = "plink_fixer"
LOG_FORMAT = "[%(asctime)s] %(levelname)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Stray non-UTF-8 bytes in a table round-trip unchanged and count as invalid ID characters.
TABLE_ENCODING = "utf-8"
TABLE_ERRORS = "surrogateescape"


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


@contextmanager
def step_logger(name: str):
    logger = get_logger()
    logger.info("> %s", name)
    start = perf_counter()
    try:
        yield logger
    finally:
        duration = perf_counter() - start
        logger.info("< %s (%.2fs)", name, duration)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, content: str) -> None:
    ensure_parent(path)
    path.write_text(content, encoding="utf-8")


def open_table(path: Path, mode: str = "r") -> IO[str]:
    return path.open(mode, encoding=TABLE_ENCODING, errors=TABLE_ERRORS, newline="\n" if "w" in mode else None)


def _tmp_sibling(path: Path) -> Path:
    return path.parent / f"{path.name}.{os.getpid()}.tmp"


@contextmanager
def atomic_write(path: Path) -> Iterator[IO[str]]:
    """Open ``path`` for writing; the file only appears once the block succeeds."""

    ensure_parent(path)
    tmp_path = _tmp_sibling(path)
    try:
        with open_table(tmp_path, "w") as handle:
            yield handle
        tmp_path.replace(path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def atomic_copy(src: Path, dst: Path) -> None:
    ensure_parent(dst)
    tmp_path = _tmp_sibling(dst)
    try:
        shutil.copyfile(src, tmp_path)
        tmp_path.replace(dst)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def count_lines(path: Path) -> int:
    total = 0
    with open_table(path) as handle:
        for line in handle:
            if line.strip():
                total += 1
    return total
