"""
Object store backed by PostgreSQL
Hierarchical objects, state values with acknowledgement, and change subscriptions
"""

import asyncpg
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import ObjectRecord, StateRecord
from .subscriptions import StateCallback, StateSubscriptions

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages PostgreSQL persistence for device objects and control point states"""

    def __init__(self, config: Dict):
        self.config = config
        self.pool = None
        self.db_host = config['database']['host']
        self.db_port = config['database']['port']
        self.db_name = config['database']['database']
        self.db_user = config['database']['username']
        self.db_password = config['database']['password']
        self.subscriptions = StateSubscriptions()

    async def initialize(self):
        """Initialize database connection pool and schema"""
        try:
            self.pool = await asyncpg.create_pool(
                host=self.db_host,
                port=self.db_port,
                database=self.db_name,
                user=self.db_user,
                password=self.db_password,
                min_size=1,
                max_size=10,
                command_timeout=10
            )
            logger.info("Database connection pool created")

            await self.create_schema()
            logger.info("Database schema initialized")

        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            raise

    async def close(self):
        await self.subscriptions.drain()
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Database connection pool closed")

    async def create_schema(self):
        """Create tables if they don't exist"""
        schema_sql = """
        CREATE TABLE IF NOT EXISTS objects (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            common JSONB NOT NULL DEFAULT '{}'::jsonb,
            native JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS states (
            id TEXT PRIMARY KEY,
            val JSONB,
            ack BOOLEAN NOT NULL DEFAULT true,
            ts TIMESTAMPTZ NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_objects_type ON objects(type);
        """

        async with self.pool.acquire() as conn:
            await conn.execute(schema_sql)

    # ================== OBJECTS ==================

    async def set_object_not_exists(self, obj: ObjectRecord) -> bool:
        """Create an object unless one with the same id exists. Returns True when created"""
        async with self.pool.acquire() as conn:
            result = await conn.execute("""
                INSERT INTO objects (id, type, common, native)
                VALUES ($1, $2, $3::jsonb, $4::jsonb)
                ON CONFLICT (id) DO NOTHING
            """, obj.id, obj.type, json.dumps(obj.common), json.dumps(obj.native))
        return result.endswith(" 1")

    async def extend_object(self, object_id: str, common: Optional[Dict[str, Any]] = None,
                            native: Optional[Dict[str, Any]] = None) -> bool:
        """Merge fields into an existing object"""
        async with self.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE objects SET
                    common = common || $2::jsonb,
                    native = native || $3::jsonb,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = $1
            """, object_id, json.dumps(common or {}), json.dumps(native or {}))
        return result.endswith(" 1")

    async def get_object(self, object_id: str) -> Optional[ObjectRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, type, common, native FROM objects WHERE id = $1", object_id
            )
        return self._row_to_object(row) if row else None

    async def get_objects(self, prefix: str, object_type: Optional[str] = None) -> List[ObjectRecord]:
        """All objects whose id starts with prefix, optionally filtered by type"""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT id, type, common, native FROM objects
                WHERE left(id, length($1)) = $1
                  AND ($2::text IS NULL OR type = $2)
                ORDER BY id
            """, prefix, object_type)
        return [self._row_to_object(row) for row in rows]

    async def del_object_subtree(self, object_id: str) -> int:
        """Delete an object, its children and their states"""
        child_prefix = object_id + "."
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                result = await conn.execute("""
                    DELETE FROM objects
                    WHERE id = $1 OR left(id, length($2)) = $2
                """, object_id, child_prefix)
                await conn.execute("""
                    DELETE FROM states
                    WHERE id = $1 OR left(id, length($2)) = $2
                """, object_id, child_prefix)
        deleted = int(result.split()[-1])
        logger.debug(f"Deleted {deleted} objects under {object_id}")
        return deleted

    # ================== STATES ==================

    async def set_state(self, state_id: str, value: Any, ack: bool = True) -> StateRecord:
        """Write a state value and notify subscribers"""
        state = StateRecord(id=state_id, val=value, ack=ack, ts=datetime.now(timezone.utc))
        async with self.pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO states (id, val, ack, ts) VALUES ($1, $2::jsonb, $3, $4)
                ON CONFLICT (id) DO UPDATE SET val = $2::jsonb, ack = $3, ts = $4
            """, state.id, json.dumps(value), ack, state.ts)
        self.subscriptions.notify(state)
        return state

    async def get_state(self, state_id: str) -> Optional[StateRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT id, val, ack, ts FROM states WHERE id = $1", state_id)
        if not row:
            return None
        return StateRecord(
            id=row['id'],
            val=json.loads(row['val']) if row['val'] is not None else None,
            ack=row['ack'],
            ts=row['ts']
        )

    def subscribe_states(self, pattern: str, callback: StateCallback):
        self.subscriptions.subscribe(pattern, callback)

    @staticmethod
    def _row_to_object(row) -> ObjectRecord:
        return ObjectRecord(
            id=row['id'],
            type=row['type'],
            common=json.loads(row['common']) if row['common'] else {},
            native=json.loads(row['native']) if row['native'] else {}
        )
