"""
Entry point: `python -m budget_api` serves the API with uvicorn.
Port comes from BUDGET_APP_PORT (default 8000).
"""

import logging

import uvicorn

from .config import get_settings
from .main import app

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="127.0.0.1", port=get_settings().port)
