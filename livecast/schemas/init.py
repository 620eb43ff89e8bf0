"""Beanie initialization for ODM."""

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from livecast.schemas.caption import CaptionRecord
from livecast.schemas.session_record import SessionRecord
from livecast.shared.storage.mongo import get_mongo_client
from livecast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


async def init_beanie_odm(
    mongo_client: AsyncIOMotorClient | AsyncIOMotorDatabase,
    database_name: str | None = None,
) -> None:
    """
    Initialize Beanie ODM with all document models.

    Args:
        mongo_client: Motor client or database instance
        database_name: Database name (only needed if passing client)
    """
    if isinstance(mongo_client, AsyncIOMotorClient):
        if not database_name:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg="database_name required when passing AsyncIOMotorClient",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        database = mongo_client[database_name]
    else:
        database = mongo_client

    await init_beanie(
        database=database,  # type: ignore[arg-type]
        document_models=[
            CaptionRecord,
            SessionRecord,
        ],
    )


async def init_schema(label: str) -> None:
    """Initialize Beanie on the default database of the labelled MongoDB connection."""
    mongo_client = get_mongo_client(label)
    await init_beanie_odm(mongo_client.get_database())


__all__ = ["init_beanie_odm", "init_schema"]
