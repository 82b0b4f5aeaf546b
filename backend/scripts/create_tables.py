import sys, pathlib, asyncio
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from sqlalchemy import text
from crm_backend.core.db import engine
from crm_backend.models import Base

async def main():
    async with engine.begin() as conn:
        one = await conn.execute(text("SELECT 1"))
        print("db-ping:", one.scalar())
        await conn.run_sync(Base.metadata.create_all)
        print("tables:", ", ".join(sorted(Base.metadata.tables)))
    await engine.dispose()

asyncio.run(main())
