"""
Startup script for the webhook delivery service.

The retry worker runs inside the web process, so keep ``--workers 1`` unless
the deployment relies on row claiming across several processes.
"""
import argparse
import logging
import os

import uvicorn

from hookrelay.config import settings
from hookrelay.utils.logging import setup_logging

logger = logging.getLogger("startup")


def main():
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description="Run the webhook delivery service")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")),
                        help="Port to run the server on")
    parser.add_argument("--host", type=str, default="0.0.0.0",
                        help="Host to run the server on")
    parser.add_argument("--workers", type=int, default=1,
                        help="Number of server processes")

    args = parser.parse_args()

    setup_logging(settings.log_level, settings.json_logging)
    logger.info(f"Starting hookrelay on {args.host}:{args.port} ({settings.environment})")
    logger.info(f"Delivery backend: {settings.delivery_backend}, retry worker: "
                f"{'enabled' if settings.retry_worker_enabled else 'disabled'}")

    uvicorn.run(
        "hookrelay.main:build_app",
        factory=True,
        host=args.host,
        port=args.port,
        workers=args.workers,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
