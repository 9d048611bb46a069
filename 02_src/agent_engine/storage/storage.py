"""SQLite storage implementation."""

import json
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import resolve_db_path
from ..errors import PersistenceError
from ..models import AgentConfig, AgentStatus


class IStatePersistence(Protocol):
    """Durable home for each agent's AgentStatus."""

    async def save_state(self, agent_id: str, status: AgentStatus) -> None:
        """Save (upsert) the status for an agent."""
        ...

    async def load_state(self, agent_id: str) -> AgentStatus | None:
        """Load the last saved status, or None if the agent was never saved."""
        ...

    async def delete_state(self, agent_id: str) -> None:
        """Forget the saved status for an agent."""
        ...


class IStorage(IStatePersistence, Protocol):
    """Persistent storage for agent statuses and configs (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # AgentConfig
    async def save_agent_config(self, config: AgentConfig) -> None:
        """Save (upsert) an agent config."""
        ...

    async def get_agent_configs(self) -> list[AgentConfig]:
        """Get all known agent configs, oldest first."""
        ...

    async def delete_agent_config(self, agent_id: str) -> None:
        """Delete an agent config."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise PersistenceError("Storage not initialized")
        return self._conn

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    # AgentStatus
    async def save_state(self, agent_id: str, status: AgentStatus) -> None:
        """Save (upsert) the status for an agent."""
        conn = self._require_conn()
        try:
            await conn.execute(
                """
                INSERT OR REPLACE INTO agent_states
                (agent_id, state, status, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                """,
                (agent_id, status.state.value, json.dumps(status.to_dict())),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to save state for {agent_id}: {e}") from e

    async def load_state(self, agent_id: str) -> AgentStatus | None:
        """Load the last saved status, or None if the agent was never saved."""
        conn = self._require_conn()
        try:
            cursor = await conn.execute(
                """
                SELECT status
                FROM agent_states
                WHERE agent_id = ?
                """,
                (agent_id,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to load state for {agent_id}: {e}") from e

        if not row:
            return None

        return AgentStatus.from_dict(json.loads(row[0]))

    async def delete_state(self, agent_id: str) -> None:
        """Forget the saved status for an agent."""
        conn = self._require_conn()
        try:
            await conn.execute(
                "DELETE FROM agent_states WHERE agent_id = ?", (agent_id,)
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to delete state for {agent_id}: {e}") from e

    # AgentConfig
    async def save_agent_config(self, config: AgentConfig) -> None:
        """Save (upsert) an agent config."""
        conn = self._require_conn()
        try:
            await conn.execute(
                """
                INSERT INTO agent_configs (agent_id, config, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(agent_id) DO UPDATE SET
                    config = excluded.config,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (config.id, json.dumps(config.to_dict())),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to save config for {config.id}: {e}") from e

    async def get_agent_configs(self) -> list[AgentConfig]:
        """Get all known agent configs, oldest first."""
        conn = self._require_conn()
        try:
            cursor = await conn.execute(
                """
                SELECT config
                FROM agent_configs
                ORDER BY created_at ASC, agent_id ASC
                """
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to load agent configs: {e}") from e

        return [AgentConfig.from_dict(json.loads(row[0])) for row in rows]

    async def delete_agent_config(self, agent_id: str) -> None:
        """Delete an agent config."""
        conn = self._require_conn()
        try:
            await conn.execute(
                "DELETE FROM agent_configs WHERE agent_id = ?", (agent_id,)
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to delete config for {agent_id}: {e}") from e

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        conn = self._require_conn()

        for table in ["agent_states", "agent_configs"]:
            await conn.execute(f"DELETE FROM {table}")

        await conn.commit()
