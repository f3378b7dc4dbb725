"""
Backup module for kroncli.

This module handles the core backup functionality including:
- Backend connections (SQLite, MySQL, PostgreSQL, MongoDB)
- Connection factory
- Run orchestration with per-backend failure isolation
- Archive packaging
- Remote storage (S3)
"""

from .context import BackupContext
from .runner import ProcessRunner, ProcessResult
from .factory import create_connection, register_connection, supported_types
from .orchestrator import BackupOrchestrator, run_backup
from .packager import create_archive, verify_archive
from .storage import S3Storage

__all__ = [
    'BackupContext',
    'ProcessRunner',
    'ProcessResult',
    'create_connection',
    'register_connection',
    'supported_types',
    'BackupOrchestrator',
    'run_backup',
    'create_archive',
    'verify_archive',
    'S3Storage'
]
