from motor.motor_asyncio import AsyncIOMotorClient
from braidr.core.config import Settings
import logging

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

async def connect_to_mongo(database: Database, settings: Settings):
    """Connect to MongoDB."""
    try:
        logger.info("Connecting to MongoDB...")
        database.client = AsyncIOMotorClient(settings.MONGO_URI)
        database.db = database.client[settings.DB_NAME]
        logger.info("Connected to MongoDB.")
    except Exception as e:
        logger.error(f"Could not connect to MongoDB: {e}")
        raise e
    return database.db

async def close_mongo_connection(database: Database):
    """Close MongoDB connection."""
    if database.client:
        logger.info("Closing MongoDB connection...")
        database.client.close()
        database.client = None
        database.db = None
        logger.info("MongoDB connection closed.")

def get_storage_collection(database: Database, settings: Settings):
    """Get the key-value collection backing MongoStorage."""
    return database.db[settings.STORAGE_COLLECTION]
