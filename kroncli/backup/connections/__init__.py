"""
Backend connections.

Each connection handles validation, probing, introspection and backup for one
backend type.
"""

from .base import Connection
from .dump import DumpConnection
from .sqlite import SQLiteConnection
from .mysql import MySQLConnection
from .postgres import PostgresConnection
from .mongodb import MongoDBConnection

__all__ = [
    'Connection',
    'DumpConnection',
    'SQLiteConnection',
    'MySQLConnection',
    'PostgresConnection',
    'MongoDBConnection',
]
