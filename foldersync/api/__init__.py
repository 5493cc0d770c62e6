"""
API Module - HTTP Interface for the Folder Server
"""

import logging

from ..config import ServerConfig
from .rest import create_app

logger = logging.getLogger(__name__)


async def run_api_server(config: ServerConfig):
    """
    Run the folder server until interrupted.

    Args:
        config: Server configuration

    In-flight requests get config.shutdown_grace_seconds to finish
    once a shutdown signal arrives.
    """
    import uvicorn

    app = create_app(config)

    uvicorn_config = uvicorn.Config(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        timeout_graceful_shutdown=int(config.shutdown_grace_seconds),
    )
    server = uvicorn.Server(uvicorn_config)
    logger.info(f"Listening on {config.host}:{config.port}")
    await server.serve()


__all__ = ['create_app', 'run_api_server']
