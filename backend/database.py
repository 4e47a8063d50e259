import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import IndexModel
from pymongo.errors import PyMongoError
from config import settings

logger = logging.getLogger(__name__)

client: AsyncIOMotorClient = None
_db_instance = None


class _DbProxy:
    """
    Proxy transparent vers l'instance Motor.
    Permet aux services de faire `from database import db` AVANT connect_db().
    db.collection → délégué à _db_instance.collection au moment de l'appel.
    """
    def __getattr__(self, name):
        if _db_instance is None:
            raise RuntimeError("Database not connected. Call connect_db() first.")
        return getattr(_db_instance, name)

    def __getitem__(self, name):
        if _db_instance is None:
            raise RuntimeError("Database not connected. Call connect_db() first.")
        return _db_instance[name]


db = _DbProxy()


async def connect_db():
    global client, _db_instance
    client = AsyncIOMotorClient(
        settings.MONGO_URL,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=10000,
    )
    _db_instance = client[settings.DB_NAME]
    logger.info(f"Connected to MongoDB: {settings.DB_NAME}")
    try:
        await create_indexes()
    except PyMongoError as e:
        logger.warning(f"Could not create indexes (non-blocking): {e}")


async def close_db():
    global client
    if client:
        client.close()
        logger.info("MongoDB connection closed")


async def create_indexes():
    collections_to_index = {
        "orders": [
            IndexModel([("order_id", 1)], unique=True),
            IndexModel([("order_number", 1)], unique=True),
            IndexModel(
                [("tracking_number", 1)], unique=True,
                partialFilterExpression={"tracking_number": {"$type": "string"}},
            ),
            IndexModel([("user_id", 1)]),
            IndexModel([("status", 1)]),
            IndexModel([("cod_status", 1)]),
        ],
        "yalidine_parcels": [
            IndexModel([("order_id", 1)], unique=True),
            IndexModel([("tracking", 1)], sparse=True),
        ],
        "processed_webhook_events": [
            IndexModel([("event_key", 1)], unique=True),
            IndexModel([("tracking_number", 1)]),
            IndexModel([("processed_at", 1)]),
        ],
        "order_locks": [
            IndexModel([("order_id", 1)], unique=True),
            # Purge automatique des verrous expirés
            IndexModel([("expires_at", 1)], expireAfterSeconds=0),
        ],
        "notifications": [
            IndexModel([("user_id", 1)]),
            IndexModel([("created_at", 1)]),
        ],
        "yalidine_wilayas": [
            IndexModel([("id", 1)], unique=True),
        ],
        "yalidine_communes": [
            IndexModel([("id", 1)], unique=True),
            IndexModel([("region_id", 1), ("active", 1)]),
        ],
        "yalidine_stopdesks": [
            IndexModel([("id", 1)], unique=True),
            IndexModel([("region_id", 1), ("active", 1)]),
        ],
        "users": [
            IndexModel([("user_id", 1)], unique=True),
            IndexModel([("role", 1)]),
        ],
    }

    for collection_name, index_models in collections_to_index.items():
        try:
            await _db_instance[collection_name].create_indexes(index_models)
            logger.info(f"Indexes created for collection: {collection_name}")
        except PyMongoError as e:
            logger.error(f"Failed to create indexes for collection {collection_name}: {e}")

    logger.info("All MongoDB indexes creation attempts completed.")
