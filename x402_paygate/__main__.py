"""Run the paygate with uvicorn.

Usage:
  python -m x402_paygate
"""

import uvicorn

from x402_paygate.config import settings
from x402_paygate.logging_config import get_logger, setup_logging


def main() -> None:
    setup_logging()
    logger = get_logger(__name__)
    logger.info("paygate_listening", host=settings.host, port=settings.port, cors_origin=settings.cors_origin)
    uvicorn.run("x402_paygate.main:app", host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
