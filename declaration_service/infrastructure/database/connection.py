from declaration_service.app.config import settings
import logging
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional

logger = logging.getLogger(__name__)

# Global client and db, managed by the application startup/shutdown events
client: Optional[AsyncIOMotorClient] = None
db: Optional[AsyncIOMotorDatabase] = None

async def connect_to_mongo():
    global client, db
    if client is not None and db is not None:
        logger.info("MongoDB connection already established.")
        return

    try:
        logger.info(f"Attempting to connect to MongoDB at {settings.MONGO_DETAILS}...")
        client = AsyncIOMotorClient(settings.MONGO_DETAILS)
        # Verify connection by pinging the admin database
        await client.admin.command('ping')
        db = client[settings.DB_NAME]
        logger.info(f"Successfully connected to MongoDB and database '{settings.DB_NAME}' is set.")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}", exc_info=True)
        client = None
        db = None
        raise ConnectionError(f"Failed to connect to MongoDB: {e}") from e

def close_mongo_connection():
    global client, db
    if client is not None:
        client.close()
        client = None
        db = None
        logger.info("MongoDB connection closed.")

def get_database() -> AsyncIOMotorDatabase:
    if db is None:
        logger.error("Database requested before connect_to_mongo() completed.")
        raise ConnectionError("Database client is not available. Connection might have failed or was not established.")
    return db
