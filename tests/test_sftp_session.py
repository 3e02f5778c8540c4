# tests/test_sftp_session.py - Session primitives, error translation and the session pool

import time

import paramiko
import pytest

from rest2sftp.core.config import ServerConfig
from rest2sftp.core.errors import ErrorKind, OperationError
from rest2sftp.core.sftp_session import (
    PerRequestSessionProvider,
    SessionPool,
    build_session_provider,
    open_session,
)

from conftest import LocalConnector, LocalSftpClient


class SilentFailureSftpClient(LocalSftpClient):
    """Reports a bare SSH_FX_FAILURE for mkdir, as many servers do for existing paths."""

    def mkdir(self, path, mode=0o777):
        try:
            super().mkdir(path, mode)
        except FileExistsError:
            pass
        raise IOError("Failure")


class DroppedChannelSftpClient(LocalSftpClient):
    def listdir_attr(self, path):
        raise paramiko.SSHException("Channel closed.")


@pytest.fixture
def session(connector):
    return connector(ServerConfig())


# --- Primitives ---

def test_mkdir_all_creates_missing_ancestors(session, remote_root):
    session.mkdir_all("/x/y/z/")
    assert (remote_root / "x" / "y" / "z").is_dir()
    session.mkdir_all("/x/y/z/")  # already there


def test_mkdir_all_tolerates_generic_failure_for_existing_directory(remote_root):
    session = LocalConnector(remote_root, SilentFailureSftpClient)(ServerConfig())
    session.mkdir_all("/made/")
    assert (remote_root / "made").is_dir()


def test_mkdir_all_blocked_by_file(session, remote_root):
    (remote_root / "plain").write_text("x")
    with pytest.raises(OperationError) as excinfo:
        session.mkdir_all("/plain/child/")
    assert excinfo.value.kind is ErrorKind.ALREADY_EXISTS
    assert excinfo.value.message == "/plain exists and is not a directory"


def test_missing_path_is_not_found(session):
    with pytest.raises(OperationError) as excinfo:
        session.remove("/nothing.txt")
    assert excinfo.value.kind is ErrorKind.PATH_NOT_FOUND
    assert excinfo.value.message == "No such file or directory"
    assert not session.broken


def test_list_returns_sftp_attributes(session, remote_root):
    (remote_root / "one.bin").write_bytes(b"1")
    entries = session.list("/")
    assert [entry.filename for entry in entries] == ["one.bin"]
    assert entries[0].st_size == 1


def test_create_truncates(session, remote_root):
    (remote_root / "t.txt").write_text("old content")
    with session.create("/t.txt") as handle:
        handle.write(b"new")
    assert (remote_root / "t.txt").read_bytes() == b"new"


def test_protocol_failure_marks_session_broken(remote_root):
    session = LocalConnector(remote_root, DroppedChannelSftpClient)(ServerConfig())
    with pytest.raises(OperationError) as excinfo:
        session.list("/")
    assert excinfo.value.kind is ErrorKind.PROTOCOL
    assert session.broken
    assert not session.is_alive()


def test_close_order_and_idempotence(connector):
    session = connector(ServerConfig())
    session.close()
    session.close()
    assert connector.events == ["sftp.close", "ssh.close"]
    assert not session.is_alive()


def test_open_session_authentication_failure(monkeypatch):
    closed = []

    def reject(self, *args, **kwargs):
        raise paramiko.AuthenticationException("Authentication failed.")

    monkeypatch.setattr(paramiko.SSHClient, "connect", reject)
    monkeypatch.setattr(paramiko.SSHClient, "close", lambda self: closed.append(True))

    with pytest.raises(OperationError) as excinfo:
        open_session(ServerConfig(sftp_user_name="bob", sftp_user_password="wrong"))
    assert excinfo.value.kind is ErrorKind.SESSION
    assert excinfo.value.message == "Authentication failed., connect sftp server failed"
    assert closed == [True]


# --- Providers ---

def test_per_request_provider_closes_on_release(connector):
    provider = PerRequestSessionProvider(ServerConfig(), connector)
    with provider.session() as first:
        pass
    with provider.session() as second:
        pass
    assert first is not second
    assert first.closed and second.closed


def test_build_session_provider_follows_mode(connector):
    assert isinstance(build_session_provider(ServerConfig(), connector), PerRequestSessionProvider)
    pooled = build_session_provider(ServerConfig(sftp_session_mode="pooled"), connector)
    assert isinstance(pooled, SessionPool)
    assert pooled.mode == "pooled"


def test_pool_reuses_released_sessions(connector):
    pool = SessionPool(ServerConfig(sftp_session_mode="pooled", sftp_pool_size=2), connector)
    first = pool.acquire()
    pool.release(first)
    second = pool.acquire()
    assert second is first
    assert len(connector.sessions) == 1
    assert pool.size == 1


def test_pool_is_bounded(connector):
    pool = SessionPool(ServerConfig(sftp_session_mode="pooled", sftp_pool_size=1, sftp_pool_timeout=0.05), connector)
    held = pool.acquire()
    started = time.monotonic()
    with pytest.raises(OperationError) as excinfo:
        pool.acquire()
    assert excinfo.value.kind is ErrorKind.SESSION
    assert time.monotonic() - started >= 0.04
    pool.release(held)
    assert pool.acquire() is held


def test_pool_discards_broken_sessions(connector):
    pool = SessionPool(ServerConfig(sftp_session_mode="pooled", sftp_pool_size=1), connector)
    session = pool.acquire()
    session.broken = True
    pool.release(session)
    assert session.closed
    assert pool.size == 0

    replacement = pool.acquire()
    assert replacement is not session


def test_pool_drops_dead_idle_sessions(connector):
    pool = SessionPool(ServerConfig(sftp_session_mode="pooled", sftp_pool_size=1), connector)
    session = pool.acquire()
    pool.release(session)
    session._ssh.transport.active = False  # server hung up while idle

    fresh = pool.acquire()
    assert fresh is not session
    assert session.closed
    assert pool.size == 1


def test_pool_connect_failure_frees_slot(remote_root):
    attempts = []

    def flaky(config):
        attempts.append(config)
        if len(attempts) == 1:
            raise OperationError(ErrorKind.SESSION, "Connection refused, connect sftp server failed")
        return LocalConnector(remote_root)(config)

    pool = SessionPool(ServerConfig(sftp_session_mode="pooled", sftp_pool_size=1, sftp_pool_timeout=0.05), flaky)
    with pytest.raises(OperationError):
        pool.acquire()
    assert pool.size == 0
    assert pool.acquire() is not None


def test_pool_close(connector):
    pool = SessionPool(ServerConfig(sftp_session_mode="pooled"), connector)
    session = pool.acquire()
    pool.release(session)
    pool.close()
    assert session.closed
    with pytest.raises(OperationError):
        pool.acquire()
