# tests/conftest.py - Shared fixtures: a local-directory stand-in for the SFTP server

import os
from pathlib import Path

import paramiko
import pytest
from fastapi.testclient import TestClient

from rest2sftp.core.config import ServerConfig
from rest2sftp.core.sftp_session import SftpSession, build_session_provider
from rest2sftp.main import create_app

BASE_PATH = "/base"


class FakeTransport:
    def __init__(self):
        self.active = True

    def is_active(self):
        return self.active


class FakeSSHClient:
    """Stands in for paramiko.SSHClient once connected."""

    def __init__(self, events: list):
        self.transport = FakeTransport()
        self.events = events

    def get_transport(self):
        return self.transport

    def close(self):
        self.transport.active = False
        self.events.append("ssh.close")


class LocalSftpClient:
    """
    Stands in for paramiko.SFTPClient, serving a local directory tree.

    Returns real paramiko.SFTPAttributes and lets the OS raise errno-tagged
    OSErrors, which is how paramiko reports SFTP status codes too.
    """

    def __init__(self, root: Path, events: list):
        self.root = root
        self.events = events

    def _local(self, path: str) -> Path:
        return self.root / path.lstrip("/")

    def listdir_attr(self, path):
        local = self._local(path)
        return [
            paramiko.SFTPAttributes.from_stat(os.stat(local / name), name)
            for name in sorted(os.listdir(local))
        ]

    def stat(self, path):
        return paramiko.SFTPAttributes.from_stat(os.stat(self._local(path)))

    def open(self, path, mode="r"):
        return open(self._local(path), mode)

    def mkdir(self, path, mode=0o777):
        os.mkdir(self._local(path), mode)

    def remove(self, path):
        os.remove(self._local(path))

    def rmdir(self, path):
        os.rmdir(self._local(path))

    def close(self):
        self.events.append("sftp.close")


class LocalConnector:
    """Connect callable for session providers; records every session it opens."""

    def __init__(self, root: Path, client_class=LocalSftpClient):
        self.root = root
        self.client_class = client_class
        self.sessions = []
        self.events = []

    def __call__(self, config):
        session = SftpSession(FakeSSHClient(self.events), self.client_class(self.root, self.events))
        self.sessions.append(session)
        return session


@pytest.fixture
def remote_root(tmp_path):
    root = tmp_path / "remote"
    root.mkdir()
    return root


@pytest.fixture
def connector(remote_root):
    return LocalConnector(remote_root)


@pytest.fixture
def make_client(connector):
    """Builds a TestClient for an app wired to the local connector."""
    def _make(**overrides):
        values = {"rest_base_path": BASE_PATH}
        values.update(overrides)
        config = ServerConfig(**values)
        app = create_app(config, build_session_provider(config, connector))
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client):
    return make_client()
