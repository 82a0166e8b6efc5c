from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for quota lookups and generation tracking."""
        try:
            # Subscriptions - one per user
            try:
                await self.db.user_subscriptions.create_index("user_id", unique=True)
            except Exception:
                pass  # Index may already exist with different options
            await self.db.user_subscriptions.create_index("status")

            # Usage tracking - latest billing period per user
            await self.db.usage_tracking.create_index([("user_id", 1), ("period_start", -1)])

            # Generation jobs - status lookups by request id, worker queue by status
            await self.db.document_generation_requests.create_index("request_id", unique=True)
            await self.db.document_generation_requests.create_index([("status", 1), ("created_at", 1)])
            await self.db.document_generation_requests.create_index([("scope_id", 1), ("created_at", -1)])

            # Documents written by the generation worker, and the materialized copies
            await self.db.generated_documents.create_index("document_id", unique=True)
            await self.db.materialized_documents.create_index("document_id", unique=True)
            await self.db.materialized_documents.create_index("scope_id")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

database = Database()

