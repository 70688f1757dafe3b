# disparador/worker/runtime.py
# Cada task roda seu código async num event loop próprio (asyncio.run), com
# conexões Mongo/Redis abertas e fechadas dentro dele.

from contextlib import asynccontextmanager
from typing import AsyncIterator

from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.database import mongo_manager, redis_manager

@asynccontextmanager
async def worker_resources() -> AsyncIterator[AsyncIOMotorDatabase]:
    await mongo_manager.connect()
    await redis_manager.connect()
    try:
        yield mongo_manager.get_db()
    finally:
        await redis_manager.disconnect()
        await mongo_manager.disconnect()
