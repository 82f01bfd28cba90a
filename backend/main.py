from __future__ import annotations

import logging
import os

from app_factory import create_app
from config.settings import _as_log_level


logging.basicConfig(
    level=_as_log_level(os.environ.get("LOG_LEVEL")),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
