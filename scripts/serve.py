#!/usr/bin/env python3
"""
Development server launcher for the ID photo API.

Run from the repository root:  python scripts/serve.py
"""

import logging
import os
import sys
from pathlib import Path

import uvicorn

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from api.idphoto import config  # noqa: E402


if __name__ == "__main__":
    logging.basicConfig(
        level=config.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not config.gemini_api_key():
        logging.getLogger("idphoto").warning(
            "GEMINI_API_KEY is not set; /api/generate will answer 500 until it is configured."
        )
    uvicorn.run(
        "api.idphoto.main:app",
        host=os.environ.get("IDPHOTO_HOST", "0.0.0.0"),
        port=int(os.environ.get("IDPHOTO_PORT", "8000")),
        reload=os.environ.get("IDPHOTO_RELOAD", "0") == "1",
        reload_dirs=[str(project_root / "api")],
        log_level=config.LOG_LEVEL,
    )
