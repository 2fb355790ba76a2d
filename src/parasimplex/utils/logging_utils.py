# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements per-worker logging for ParaSimplex.
#
# ===--------------------------------------------------------------------------------------===#

from typing import Optional

import logging
import pathlib


class SizeLimitedFormatter(logging.Formatter):
    """Logging formatter that truncates overly long messages.

    The limit applies to the message content only, before the timestamp, level and worker
    prefix are added. Long messages are cut and marked with a truncation suffix, which
    keeps a dump of a large simplex from flooding the log.

    Attributes:
        max_msg_sz: Maximum allowed length for log message content in characters.
    """

    TRUNCATION_SUFFIX: str = "... [TRUNCATED]"

    def __init__(
        self, fmt: Optional[str] = None, datefmt: Optional[str] = None, max_msg_sz: int = 512
    ) -> None:
        """Initialize the size-limited formatter.

        Args:
            fmt: Format string for log messages. If None, uses the default format.
            datefmt: Format string for the date/time portion. If None, uses the default.
            max_msg_sz: Maximum allowed length for the message content in characters.

        Raises:
            ValueError: If max_msg_sz cannot hold the truncation suffix.
        """
        if max_msg_sz < len(self.TRUNCATION_SUFFIX):
            raise ValueError(
                f"max_msg_sz must be at least {len(self.TRUNCATION_SUFFIX)}"
                " characters to accommodate truncation indicator"
            )

        super().__init__(fmt, datefmt)
        self.max_msg_sz: int = max_msg_sz

    def format(self, record: logging.LogRecord) -> str:
        """Formats the record, truncating the message if it exceeds ``max_msg_sz``.

        The record's message is restored afterwards so other handlers see it unchanged.
        """
        message_content: str = record.getMessage()

        if len(message_content) > self.max_msg_sz:
            original_msg = record.msg
            original_args = record.args

            truncate_length: int = self.max_msg_sz - len(self.TRUNCATION_SUFFIX)
            record.msg = message_content[:truncate_length] + self.TRUNCATION_SUFFIX
            record.args = None

            formatted: str = super().format(record)

            record.msg = original_msg
            record.args = original_args
            return formatted

        return super().format(record)


def get_logger(
    rank: int = 0,
    results_dir: Optional[pathlib.Path] = None,
    append_mode: bool = False,
    level: int = logging.INFO,
    max_msg_sz: int = 512,
) -> logging.Logger:
    """Creates the logger of one worker, writing to stdout and optionally to a file.

    Each message is prefixed with the worker rank so that interleaved output of a whole
    group stays readable.

    Args:
        rank: Rank of the worker creating the logger.
        results_dir: Directory where ``results.log`` is created. If None, logs only to
            stdout.
        append_mode: If True, append to an existing log file; if False, overwrite.
        level: Logging level of the logger and its handlers.
        max_msg_sz: Maximum size for log messages in characters.

    Returns:
        Configured Logger instance for the worker.
    """
    if results_dir:
        sanitized_dir: str = str(results_dir).replace("/", "_").replace("\\", "_")
        logger_name: str = f"parasimplex.worker_{rank}.{sanitized_dir}"
    else:
        logger_name: str = f"parasimplex.worker_{rank}"

    logger: logging.Logger = logging.getLogger(logger_name)
    if not logger.handlers:
        logger.setLevel(level)
        log_formatter = SizeLimitedFormatter(
            f"[worker {rank}] %(asctime)s | %(levelname)s | %(process)d | %(message)s",
            max_msg_sz=max_msg_sz,
        )
        logger.propagate = False

        stream_handler: logging.StreamHandler = logging.StreamHandler()
        stream_handler.setFormatter(log_formatter)
        logger.addHandler(stream_handler)

        if results_dir:
            results_dir = pathlib.Path(results_dir)
            results_dir.mkdir(parents=True, exist_ok=True)
            fh: logging.FileHandler = logging.FileHandler(
                results_dir.joinpath("results.log"), mode="a" if append_mode else "w"
            )
            fh.setLevel(level)
            fh.setFormatter(log_formatter)
            logger.addHandler(fh)

    return logger
