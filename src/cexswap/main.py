"""Main entry point - runs the API server."""

import asyncio
import logging
import signal

import uvicorn

from cexswap.api.app import create_app
from cexswap.config import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings."""
    log_level = logging.DEBUG if settings.debug else getattr(
        logging, settings.log_level.upper(), logging.INFO
    )
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Request lines are logged by our own middleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


class Application:
    """Main application that serves the HTTP API."""

    def __init__(self):
        self.settings = get_settings()
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services."""
        configure_logging(self.settings)

        logger.info("Starting cexswap...")
        logger.info(f"Environment: {self.settings.environment}")
        if not self.settings.withdraw_address:
            logger.warning("WITHDRAW_ADDRESS not set - swaps will fail validation")

        api_task = asyncio.create_task(self._run_api())

        # Wait for shutdown signal or server exit
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())
        await asyncio.wait({api_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

        for task in (api_task, shutdown_task):
            task.cancel()
        await asyncio.gather(api_task, shutdown_task, return_exceptions=True)
        logger.info("Shutdown complete")

    async def _run_api(self):
        """Run the FastAPI server."""
        try:
            config = uvicorn.Config(
                create_app(),
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            raise

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


async def _update_tokens() -> dict:
    from cexswap.exchange.client import ExchangeClient
    from cexswap.tokens.service import TokenListService

    settings = get_settings()
    async with ExchangeClient.from_settings(settings) as exchange:
        service = TokenListService.from_settings(exchange, settings)
        if not service.should_update():
            logger.info("Token catalogue is complete, nothing to update")
            return {}
        return await service.update_contract_addresses()


def update_tokens():
    """Refresh contract addresses in the token catalogue from the exchange."""
    configure_logging(get_settings())
    result = asyncio.run(_update_tokens())
    if result:
        logger.info(f"Token catalogue updated: {result}")


def main():
    """Main entry point."""
    app = Application()

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
