"""Seed the default stage catalog into stage_settings."""

import asyncio

from sales_pipeline.db.connection import async_session, engine
from sales_pipeline.domain.stage_catalog import default_catalog
from sales_pipeline.store import stage_store


async def seed() -> None:
    async with async_session() as session:
        for stage in default_catalog():
            await stage_store.upsert(session, stage)
            print(
                f"[seed] {stage.position}: {stage.key} "
                f"({stage.default_probability}%, {stage.points} pts)"
            )
        # Round-trip through the validator so a broken table fails loudly here
        catalog = await stage_store.load_catalog(session)
        print(f"[seed] Catalog OK: {len(catalog)} stages")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
