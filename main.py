"""
skycast entrypoint.
Resolves the city names given on the command line and logs the statistics.

    python main.py Paris Lyon paris
"""

import asyncio
import sys

from loguru import logger

from skycast.app import build_orchestrator, build_weather_source
from skycast.services.errors import ServiceError
from skycast.settings import Settings


async def main(cities: list[str]) -> int:
    """Main function."""
    settings = Settings.from_env()

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    logger.info("Starting skycast...")
    source = build_weather_source(settings)
    orchestrator = build_orchestrator(settings, source)
    failures = 0

    try:
        async with orchestrator:
            for city in cities:
                try:
                    # Each city gets its own subject so none supersedes another
                    result = await orchestrator.resolve(city, subject=city)
                except ServiceError as e:
                    failures += 1
                    logger.error(f"{city}: {e.code}: {e}")
                    continue

                if result is None:
                    continue

                data = result.data
                origin = "cache" if result.from_cache else f"{result.latency_ms:.0f}ms"
                logger.info(
                    f"{data.city_name}, {data.country}: {data.temperature}°C, "
                    f"{data.description} ({origin})"
                )

            logger.info(f"Statistics: {orchestrator.get_statistics().to_dict()}")

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        await source.close()
        logger.info("skycast stopped")

    return 1 if failures else 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(f"usage: {sys.argv[0]} CITY [CITY ...]", file=sys.stderr)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1:])))
