"""
Shared pytest fixtures for kroncli tests.

This module provides fixtures for:
- A scripted process runner standing in for dump and client programs
- SQLite database files on disk
- Backend configurations for every supported type
- Mock fixtures for external services (S3)
"""

import os
import sqlite3
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import pytest
import boto3
from moto import mock_aws

from kroncli.models import BackendConfig
from kroncli.backup.context import BackupContext
from kroncli.backup.runner import ProcessRunner, ProcessResult


@dataclass
class RunnerCall:
    args: List[str]
    env: Dict[str, str]
    timeout: Optional[float]
    stdout_path: Optional[str]


@dataclass
class ScriptedResult:
    program: str
    contains: Optional[str] = None
    returncode: int = 0
    stdout: bytes = b''
    stderr: bytes = b''
    output: Optional[bytes] = None  # bytes written to the dump destination
    side_effect: Optional[Exception] = None


class FakeRunner(ProcessRunner):
    """
    ProcessRunner that never spawns anything.

    Programs listed in ``missing`` are absent from PATH. Results are scripted
    per program (optionally narrowed by a substring of the arguments); the
    last matching script wins. Unscripted calls exit 0 with no output.
    """

    def __init__(self, missing=()):
        self.missing = set(missing)
        self.calls: List[RunnerCall] = []
        self.scripts: List[ScriptedResult] = []

    def script(self, program, contains=None, **kwargs) -> ScriptedResult:
        scripted = ScriptedResult(program=program, contains=contains, **kwargs)
        self.scripts.append(scripted)
        return scripted

    def which(self, program):
        if program in self.missing:
            return None
        return f'/usr/bin/{program}'

    def calls_to(self, program) -> List[RunnerCall]:
        return [c for c in self.calls if c.args[0] == program]

    def _match(self, args) -> ScriptedResult:
        for scripted in reversed(self.scripts):
            if scripted.program != args[0]:
                continue
            if scripted.contains and not any(scripted.contains in a for a in args):
                continue
            return scripted
        return ScriptedResult(program=args[0])

    def run(self, args, env=None, timeout=None, stdout_path=None):
        self.require(args[0])
        self.calls.append(RunnerCall(list(args), dict(env or {}), timeout, stdout_path))

        scripted = self._match(args)
        if scripted.side_effect is not None:
            raise scripted.side_effect

        if scripted.output is not None:
            target = stdout_path or _output_arg(args)
            with open(target, 'wb') as f:
                f.write(scripted.output)

        return ProcessResult(
            args=list(args),
            returncode=scripted.returncode,
            stdout=scripted.stdout,
            stderr=scripted.stderr
        )


def _output_arg(args) -> str:
    for arg in args:
        for flag in ('--file=', '--archive='):
            if arg.startswith(flag):
                return arg[len(flag):]
    raise AssertionError(f"No output path in {args}")


@pytest.fixture
def runner_class():
    """The FakeRunner class, for tests that need a subclass or missing programs."""
    return FakeRunner


@pytest.fixture
def fake_runner():
    """FakeRunner with every program present."""
    return FakeRunner()


@pytest.fixture
def context(fake_runner):
    """BackupContext wired to the fake runner."""
    return BackupContext(
        runner=fake_runner,
        logger=logging.getLogger('kroncli.tests'),
        probe_timeout=5
    )


def _make_sqlite_db(path, rows):
    conn = sqlite3.connect(path)
    try:
        conn.execute('CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT)')
        conn.executemany('INSERT INTO items (name) VALUES (?)', [(r,) for r in rows])
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def sqlite_dir(tmp_path):
    """
    Directory with two SQLite databases.

    Creates:
    - app.db (3 rows)
    - users.db (2 rows)
    """
    data_dir = tmp_path / 'data'
    data_dir.mkdir()
    _make_sqlite_db(data_dir / 'app.db', ['alpha', 'beta', 'gamma'])
    _make_sqlite_db(data_dir / 'users.db', ['alice', 'bob'])
    return data_dir


@pytest.fixture
def sqlite_config(sqlite_dir):
    return BackendConfig(path=str(sqlite_dir), databases=['app.db', 'users.db'])


@pytest.fixture
def mysql_config():
    return BackendConfig(
        host='localhost',
        port=3306,
        user='backup_user',
        password='s3cr3t-mysql',
        databases=['production_db', 'analytics_db']
    )


@pytest.fixture
def postgres_config():
    return BackendConfig(
        host='localhost',
        port=5432,
        user='postgres',
        password='s3cr3t-pg',
        databases=['main_db']
    )


@pytest.fixture
def mongodb_config():
    return BackendConfig(
        host='localhost',
        port=27017,
        user='admin',
        password='s3cr3t-mongo',
        databases=['app_data']
    )


@pytest.fixture
def output_dir(tmp_path):
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def staging_tree(tmp_path):
    """
    Staging tree as two backends would leave it.

    Creates:
    - sqlite/app.db
    - mysql/production_db.sql
    - mysql/nested/extra.txt
    """
    root = tmp_path / 'staging'
    (root / 'sqlite').mkdir(parents=True)
    (root / 'mysql' / 'nested').mkdir(parents=True)
    (root / 'sqlite' / 'app.db').write_bytes(os.urandom(4096))
    (root / 'mysql' / 'production_db.sql').write_text('CREATE TABLE t (id int);\n' * 50)
    (root / 'mysql' / 'nested' / 'extra.txt').write_text('extra')
    return root


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3
