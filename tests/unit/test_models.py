"""
Unit tests for result and configuration models (kroncli/models.py).
"""

from datetime import datetime, timedelta

from kroncli.models import (
    ArchiveInfo,
    BackendConfig,
    BackupResult,
    BackupStatus,
    ConnectionState,
    ConnectionStatus,
    DatabaseDescriptor,
    RunReport,
)


class TestBackendConfig:
    """Test BackendConfig construction from config sections."""

    def test_from_dict_server_section(self):
        config = BackendConfig.from_dict({
            'host': 'db.internal',
            'port': '3306',
            'user': 'backup',
            'password': 'secret',
            'databases': ['a', 'b'],
        })

        assert config.host == 'db.internal'
        assert config.port == 3306
        assert config.user == 'backup'
        assert config.databases == ['a', 'b']
        assert config.auth_database == 'admin'

    def test_from_dict_accepts_aliases(self):
        config = BackendConfig.from_dict({'username': 'root', 'targets': 'only_db'})

        assert config.user == 'root'
        assert config.databases == ['only_db']

    def test_directory_prefers_path(self):
        assert BackendConfig(host='/srv/a', path='/srv/b').directory == '/srv/b'
        assert BackendConfig(host='/srv/a').directory == '/srv/a'

    def test_password_not_in_repr(self):
        config = BackendConfig(host='h', password='hunter2')

        assert 'hunter2' not in repr(config)


class TestStatusModels:

    def test_descriptor_str(self):
        assert str(DatabaseDescriptor('main', 1024)) == 'main (1024 bytes)'
        assert str(DatabaseDescriptor('main')) == 'main (unknown size)'

    def test_connection_status_constructors(self):
        assert ConnectionStatus.connected().is_connected
        assert ConnectionStatus.disconnected('gone').state is ConnectionState.DISCONNECTED
        error = ConnectionStatus.error('refused')
        assert not error.is_connected
        assert error.detail == 'refused'


def _result(backend, status, seconds=2):
    start = datetime(2024, 1, 1, 12, 0, 0)
    return BackupResult(
        backend=backend,
        status=status,
        started_at=start,
        completed_at=start + timedelta(seconds=seconds),
        reason='' if status is BackupStatus.SUCCESS else 'boom',
        bytes_written=10 if status is BackupStatus.SUCCESS else 0
    )


class TestRunReport:

    def test_partitions_results(self):
        report = RunReport(
            results=[
                _result('sqlite', BackupStatus.SUCCESS),
                _result('mysql', BackupStatus.FAILED),
                _result('mongodb', BackupStatus.SKIPPED),
            ],
            archive=ArchiveInfo('/backups/x.tar.gz', 10, 1, 5),
            started_at=datetime(2024, 1, 1),
            completed_at=datetime(2024, 1, 1, 0, 1)
        )

        assert [r.backend for r in report.succeeded] == ['sqlite']
        assert [r.backend for r in report.failed] == ['mysql']

    def test_as_dict(self):
        report = RunReport(
            results=[_result('sqlite', BackupStatus.SUCCESS, seconds=3)],
            archive=ArchiveInfo('/backups/x.tar.gz', 10, 1, 5),
            started_at=datetime(2024, 1, 1),
            completed_at=datetime(2024, 1, 1, 0, 1)
        )

        data = report.as_dict()

        assert data['archive'] == '/backups/x.tar.gz'
        assert data['results'][0]['status'] == 'success'
        assert data['results'][0]['elapsed_seconds'] == 3.0
