"""
Bulk import job.

Streams the upstream card dump into the card store. Skips the run when
the last import is still fresh unless --force is given. Can be run as a
standalone script or called from a scheduler.
"""

import argparse
import asyncio
import logging

from cardidentity.config import settings
from cardidentity.context import EngineContext
from cardidentity.db.store import format_bytes
from cardidentity.models.card import ImportStats
from cardidentity.models.failure import EngineError

logger = logging.getLogger(__name__)


async def run_import(force: bool = False) -> ImportStats | None:
    """
    Run one bulk import.

    Args:
        force: Import even if the store is fresh

    Returns:
        Import statistics, or None if skipped
    """
    async with EngineContext(settings) as engine:
        try:
            stats = await engine.importer.run(force=force)
        except EngineError as e:
            logger.error("Bulk import failed (%s): %s", e.kind.value, e.message)
            raise

        if stats is not None:
            size = await engine.store.size_bytes()
            logger.info(
                "Imported %d cards; store holds %d cards (%s)",
                stats.cards_imported,
                await engine.store.count(),
                format_bytes(size),
            )
        return stats


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Import the upstream bulk card dump")
    parser.add_argument("--force", action="store_true", help="import even if the store is fresh")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_import(force=args.force))


if __name__ == "__main__":
    main()
