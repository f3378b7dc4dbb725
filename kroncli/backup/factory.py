"""Connection factory: backend type id to connection class."""

from typing import Dict, List, Optional, Type

from kroncli.models import BackendConfig
from .context import BackupContext
from .errors import UnsupportedTypeError
from .connections import (
    Connection,
    SQLiteConnection,
    MySQLConnection,
    PostgresConnection,
    MongoDBConnection,
)

_registry: Dict[str, Type[Connection]] = {}


def register_connection(type_id: str, connection_class: Type[Connection]) -> None:
    """
    Register a connection class under a backend type id.

    Raises:
        ValueError: If the class is not a Connection subclass
    """
    if not (isinstance(connection_class, type) and issubclass(connection_class, Connection)):
        raise ValueError(f"{connection_class!r} is not a Connection subclass")
    _registry[type_id] = connection_class


def unregister_connection(type_id: str) -> None:
    _registry.pop(type_id, None)


def supported_types() -> List[str]:
    return sorted(_registry)


def create_connection(
    type_id: str,
    config: BackendConfig,
    context: Optional[BackupContext] = None
) -> Connection:
    """
    Construct the connection for a backend type. No I/O.

    Args:
        type_id: Backend type id ('sqlite', 'mysql', 'postgres', 'mongodb')
        config: Backend configuration
        context: Run context shared with the connection

    Returns:
        Connection instance

    Raises:
        UnsupportedTypeError: If no connection is registered for type_id
    """
    connection_class = _registry.get(type_id)
    if connection_class is None:
        raise UnsupportedTypeError(
            f"Unsupported database type: {type_id}. Valid options: {supported_types()}",
            backend=type_id
        )
    return connection_class(config, context)


for _cls in (SQLiteConnection, MySQLConnection, PostgresConnection, MongoDBConnection):
    register_connection(_cls.database_type, _cls)
