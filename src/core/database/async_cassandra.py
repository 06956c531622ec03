"""Async Cassandra connection for the progress stores.

Provides:
- One cluster/session per process, created on startup
- An execution profile tuned for lightweight transactions (the progress
  compare-and-swap runs with ``IF version = ?``)
- Keyspace and table initialization (async)
"""

import structlog
from cassandra import ConsistencyLevel
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import EXEC_PROFILE_DEFAULT, ExecutionProfile
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra_asyncio.cluster import Cluster

from src.config.settings import Settings, get_settings
from src.progress.models import DIRECTORY_TABLES_CQL, PROGRESS_TABLES_CQL


logger = structlog.get_logger(__name__)


def _execution_profile(settings: Settings) -> ExecutionProfile:
    """Quorum reads/writes; LOCAL_SERIAL for the Paxos phase of LWTs."""
    return ExecutionProfile(
        load_balancing_policy=TokenAwarePolicy(
            DCAwareRoundRobinPolicy(local_dc=settings.cassandra_local_dc)
        ),
        consistency_level=ConsistencyLevel.LOCAL_QUORUM,
        serial_consistency_level=ConsistencyLevel.LOCAL_SERIAL,
        request_timeout=settings.cassandra_request_timeout,
    )


class AsyncCassandraConnection:
    """Process-wide Cassandra connection.

    Uses cassandra-asyncio-driver, so the session exposes ``aexecute()``.
    """

    _cluster: Cluster | None = None
    _session = None  # Session type from cassandra_asyncio

    @classmethod
    def connect(cls):
        """Connect to the cluster, reusing an open session.

        Raises:
            ConnectionError: If no host could be reached
        """
        if cls._session is not None:
            return cls._session

        settings = get_settings()

        auth_provider = None
        if settings.cassandra_username and settings.cassandra_password:
            auth_provider = PlainTextAuthProvider(
                username=settings.cassandra_username,
                password=settings.cassandra_password,
            )

        cls._cluster = Cluster(
            contact_points=settings.cassandra_hosts,
            port=settings.cassandra_port,
            auth_provider=auth_provider,
            protocol_version=settings.cassandra_protocol_version,
            execution_profiles={EXEC_PROFILE_DEFAULT: _execution_profile(settings)},
            connect_timeout=settings.cassandra_connect_timeout,
        )

        try:
            cls._session = cls._cluster.connect()
        except Exception as e:
            logger.error(
                "cassandra_connection_failed",
                hosts=settings.cassandra_hosts,
                error=str(e),
            )
            cls._cluster.shutdown()
            cls._cluster = None
            raise ConnectionError(f"Failed to connect to Cassandra: {e}") from e

        logger.info(
            "cassandra_connected",
            hosts=settings.cassandra_hosts,
            port=settings.cassandra_port,
            local_dc=settings.cassandra_local_dc,
        )
        return cls._session

    @classmethod
    def disconnect(cls) -> None:
        if cls._session is not None:
            cls._session.shutdown()
            cls._session = None
        if cls._cluster is not None:
            cls._cluster.shutdown()
            cls._cluster = None
            logger.info("cassandra_disconnected")


async def init_async_keyspace(session, settings: Settings) -> None:
    """Create the keyspace if it does not exist."""
    keyspace = settings.cassandra_keyspace
    if settings.cassandra_local_dc:
        replication = (
            f"'class': 'NetworkTopologyStrategy', "
            f"'{settings.cassandra_local_dc}': {settings.cassandra_replication_factor}"
        )
    else:
        replication = (
            f"'class': 'SimpleStrategy', "
            f"'replication_factor': {settings.cassandra_replication_factor}"
        )

    await session.aexecute(
        f"CREATE KEYSPACE IF NOT EXISTS {keyspace} "
        f"WITH replication = {{{replication}}} AND durable_writes = true"
    )
    logger.info("cassandra_keyspace_ready", keyspace=keyspace)


async def init_async_tables(session, keyspace: str, statements: list[str]) -> None:
    """Run CQL table templates (``{keyspace}`` placeholders) in order."""
    for cql_template in statements:
        await session.aexecute(cql_template.format(keyspace=keyspace))


async def init_async_cassandra():
    """Connect and make sure the progress schema exists.

    Returns:
        Session with aexecute() support, bound to the configured keyspace
    """
    settings = get_settings()
    session = AsyncCassandraConnection.connect()

    await init_async_keyspace(session, settings)
    session.set_keyspace(settings.cassandra_keyspace)

    await init_async_tables(session, settings.cassandra_keyspace, PROGRESS_TABLES_CQL)
    await init_async_tables(session, settings.cassandra_keyspace, DIRECTORY_TABLES_CQL)
    logger.info(
        "cassandra_schema_ready",
        keyspace=settings.cassandra_keyspace,
        tables=len(PROGRESS_TABLES_CQL) + len(DIRECTORY_TABLES_CQL),
    )
    return session


async def shutdown_async_cassandra() -> None:
    AsyncCassandraConnection.disconnect()
