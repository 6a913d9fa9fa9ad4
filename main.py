# main.py
import asyncio
import logging
from shopcore.app import ShopCore
from shopcore.config import Config, setup_logging

async def main():
    # Setup logging
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        Config.validate()
        shop = ShopCore()
        logger.info("Starting checkout service...")
        await shop.start()
    except Exception as e:
        logger.error(f"Error starting checkout service: {e}", exc_info=True)
        raise

if __name__ == "__main__":
    asyncio.run(main())
