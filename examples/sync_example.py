"""Example usage of async registry sync."""

import asyncio
import logging
import sys

# Add parent directory to path
sys.path.insert(0, "src")

from registry_sync import (
    ImageSynchronizer,
    RegistryError,
    SyncConfig,
    check_registry_connectivity,
    parse_image_reference,
    save_image,
    sync_image,
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SOURCE_REGISTRY = "http://localhost:5000"
DESTINATION_REGISTRY = "http://localhost:15000"


async def main():
    """Copy one image, then export it."""
    try:
        for url in (SOURCE_REGISTRY, DESTINATION_REGISTRY):
            if not await check_registry_connectivity(url):
                logger.error(f"Registry {url} is not reachable")
                return
        logger.info("✓ Registries are accessible")

        digest = await sync_image(
            f"{SOURCE_REGISTRY}/nginx:alpine",
            f"{DESTINATION_REGISTRY}/mirror/nginx:alpine",
            mode="tarball",
        )
        logger.info(f"Synced nginx:alpine ({digest})")

        path = await save_image(f"{DESTINATION_REGISTRY}/mirror/nginx:alpine", "nginx.tar")
        logger.info(f"Saved to {path}")

    except RegistryError as e:
        logger.error(f"Registry error: {e}")
    except Exception as e:
        logger.error(f"Unexpected error: {e}")


async def mirror_many():
    """Share one synchronizer across several images and report metrics."""
    config = SyncConfig.from_env()
    images = ["alpine:3.19", "busybox:latest", "redis:7"]

    try:
        async with ImageSynchronizer(config) as syncer:
            tasks = [
                syncer.sync_image(
                    parse_image_reference(f"{SOURCE_REGISTRY}/{image}"),
                    parse_image_reference(f"{DESTINATION_REGISTRY}/mirror/{image}"),
                )
                for image in images
            ]
            results = await asyncio.gather(*tasks, return_exceptions=True)

            for image, result in zip(images, results, strict=False):
                if isinstance(result, Exception):
                    logger.error(f"{image}: {result}")
                else:
                    logger.info(f"{image}: {result}")

            metrics = syncer.get_metrics()
            logger.info(
                f"Concurrency {metrics['concurrency']}, "
                f"heap {metrics['process_memory']['heap_used'] / 1024 / 1024:.1f}MB"
            )

    except RegistryError as e:
        logger.error(f"Registry error: {e}")


if __name__ == "__main__":
    asyncio.run(main())
    asyncio.run(mirror_many())
