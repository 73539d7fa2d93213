"""Create the pipeline tables (stages, profiles, opportunities, history, targets).

    python scripts/init_db.py           # create missing tables
    python scripts/init_db.py --reset   # drop and recreate (local dev only)
"""

import argparse
import asyncio

from sales_pipeline.db.connection import engine
from sales_pipeline.db.models import Base


async def init(reset: bool = False) -> None:
    async with engine.begin() as conn:
        if reset:
            await conn.run_sync(Base.metadata.drop_all)
            print("[init_db] Dropped existing pipeline tables.")
        await conn.run_sync(Base.metadata.create_all)
    for table in Base.metadata.sorted_tables:
        print(f"[init_db] {table.name}: {len(table.columns)} columns")
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--reset", action="store_true", help="drop all pipeline tables first")
    asyncio.run(init(parser.parse_args().reset))
