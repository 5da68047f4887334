from __future__ import annotations

import logging
import os
import sys

from pythonjsonlogger.json import JsonFormatter

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
HANDLER_NAME = "prompt_suite"


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    if json_output is None:
        json_output = (os.environ.get("LOG_JSON") or "").strip().lower() in {"1", "true", "yes"}

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    if json_output:
        handler.setFormatter(JsonFormatter(LOG_FORMAT, rename_fields={"levelname": "level"}))
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # SDK transports are chatty at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)
