# rest2sftp/core/sftp_session.py - SSH/SFTP session lifecycle and remote primitives

import errno
import logging
import posixpath
import stat
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, List

import paramiko

from .config import ServerConfig
from .errors import ErrorKind, OperationError, classify, describe, wrap

logger = logging.getLogger(__name__)

# Failures after which a session can no longer be trusted for reuse
_BROKEN_KINDS = (ErrorKind.SESSION, ErrorKind.PROTOCOL)


class SftpSession:
    """
    A paired (SSH client, SFTP client) handle.

    Every primitive translates paramiko/OS failures into an OperationError tagged
    with its ErrorKind; the message is the underlying error text alone, the
    caller attaches the stage description.
    """

    def __init__(self, ssh: paramiko.SSHClient, sftp: paramiko.SFTPClient):
        self._ssh = ssh
        self._sftp = sftp
        self.broken = False
        self.closed = False

    # --- Lifecycle ---

    def is_alive(self) -> bool:
        if self.broken or self.closed:
            return False
        transport = self._ssh.get_transport()
        return transport is not None and transport.is_active()

    def close(self) -> None:
        """Closes the SFTP client, then the SSH channel it runs on."""
        if self.closed:
            return
        self.closed = True
        try:
            self._sftp.close()
        except Exception as e:
            logger.warning(f"Error closing SFTP client: {e}")
        try:
            self._ssh.close()
        except Exception as e:
            logger.warning(f"Error closing SSH connection: {e}")
        logger.debug("SFTP session closed.")

    @contextmanager
    def _remote_call(self, operation: str, path: str) -> Iterator[None]:
        try:
            yield
        except OperationError:
            raise
        except Exception as e:
            kind = classify(e)
            if kind in _BROKEN_KINDS:
                self.broken = True
            logger.debug(f"Remote {operation} failed for '{path}': {type(e).__name__}: {e}")
            raise OperationError(kind, describe(e)) from e

    # --- Remote primitives ---

    def list(self, path: str) -> List[paramiko.SFTPAttributes]:
        """Reads a remote directory; entries come back in server order."""
        with self._remote_call("list", path):
            return self._sftp.listdir_attr(path)

    def stat(self, path: str) -> paramiko.SFTPAttributes:
        with self._remote_call("stat", path):
            return self._sftp.stat(path)

    def open(self, path: str) -> paramiko.SFTPFile:
        """Opens a remote file for reading."""
        with self._remote_call("open", path):
            return self._sftp.open(path, "rb")

    def create(self, path: str) -> paramiko.SFTPFile:
        """Opens a remote file for writing, creating it or truncating an existing one."""
        with self._remote_call("create", path):
            return self._sftp.open(path, "wb")

    def remove(self, path: str) -> None:
        with self._remote_call("remove", path):
            self._sftp.remove(path)

    def remove_dir(self, path: str) -> None:
        """Removes a remote directory with the server's own rmdir semantics."""
        with self._remote_call("remove_dir", path):
            self._sftp.rmdir(path)

    def mkdir_all(self, path: str) -> None:
        """Creates a directory and any missing ancestors; an existing directory is fine."""
        with self._remote_call("mkdir_all", path):
            self._mkdir_all(path.rstrip("/") or "/")

    def _mkdir_all(self, path: str) -> None:
        try:
            attrs = self._sftp.stat(path)
        except (FileNotFoundError, NotADirectoryError):
            pass
        else:
            if stat.S_ISDIR(attrs.st_mode or 0):
                return
            raise FileExistsError(errno.EEXIST, f"{path} exists and is not a directory")

        parent = posixpath.dirname(path)
        if parent and parent != path:
            self._mkdir_all(parent)

        try:
            self._sftp.mkdir(path)
        except OSError:
            # Servers report SSH_FX_FAILURE for an existing directory; a concurrent
            # creator may also have won the race.
            try:
                attrs = self._sftp.stat(path)
            except OSError:
                attrs = None
            if attrs is None or not stat.S_ISDIR(attrs.st_mode or 0):
                raise


def open_session(config: ServerConfig) -> SftpSession:
    """
    Dials the remote host, authenticates with the configured password and opens
    an SFTP client on the resulting channel.

    Raises:
        OperationError: SESSION kind when the connection or handshake fails.
    """
    ssh = paramiko.SSHClient()
    if config.sftp_known_hosts:
        ssh.load_host_keys(config.sftp_known_hosts)
        ssh.set_missing_host_key_policy(paramiko.RejectPolicy())
    else:
        ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    logger.info(f"Connecting to SFTP server at {config.sftp_address} as '{config.sftp_user_name}'")
    try:
        ssh.connect(
            hostname=config.sftp_server_address,
            port=config.sftp_server_port,
            username=config.sftp_user_name,
            password=config.sftp_user_password,
            timeout=config.sftp_dial_timeout,
            banner_timeout=config.sftp_dial_timeout,
            auth_timeout=config.sftp_dial_timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        sftp = ssh.open_sftp()
    except Exception as e:
        logger.error(f"Connect to SFTP server {config.sftp_address} failed: {e}")
        ssh.close()
        raise wrap(e, "connect sftp server failed", kind=ErrorKind.SESSION) from e

    return SftpSession(ssh, sftp)


# --- Session providers ---

Connector = Callable[[ServerConfig], SftpSession]


class SessionProvider:
    """Hands out sessions to requests and takes them back."""

    mode = "custom"

    def __init__(self, config: ServerConfig, connect: Connector = open_session):
        self._config = config
        self._connect = connect

    def acquire(self) -> SftpSession:
        raise NotImplementedError

    def release(self, session: SftpSession) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    @contextmanager
    def session(self) -> Iterator[SftpSession]:
        session = self.acquire()
        try:
            yield session
        finally:
            self.release(session)


class PerRequestSessionProvider(SessionProvider):
    """Opens a fresh session for every request and closes it afterwards."""

    mode = "per_request"

    def acquire(self) -> SftpSession:
        return self._connect(self._config)

    def release(self, session: SftpSession) -> None:
        session.close()


class SessionPool(SessionProvider):
    """
    Bounded pool of sessions shared across requests.

    A checked-out session belongs to exactly one request until it is released.
    Dead or broken sessions are closed instead of being returned to the pool.
    """

    mode = "pooled"

    def __init__(self, config: ServerConfig, connect: Connector = open_session):
        super().__init__(config, connect)
        self._max_size = config.sftp_pool_size
        self._timeout = config.sftp_pool_timeout
        self._idle: List[SftpSession] = []
        self._size = 0
        self._closed = False
        self._cond = threading.Condition()

    @property
    def size(self) -> int:
        return self._size

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    def acquire(self) -> SftpSession:
        deadline = time.monotonic() + self._timeout
        stale: List[SftpSession] = []
        reused = None
        try:
            with self._cond:
                while reused is None:
                    if self._closed:
                        raise OperationError(ErrorKind.SESSION, "session pool is closed")
                    while self._idle:
                        candidate = self._idle.pop()
                        if candidate.is_alive():
                            reused = candidate
                            break
                        stale.append(candidate)
                        self._size -= 1
                    if reused is not None:
                        break
                    if self._size < self._max_size:
                        self._size += 1
                        break
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise OperationError(
                            ErrorKind.SESSION,
                            f"no sftp session available within {self._timeout:g}s",
                        )
                    self._cond.wait(remaining)
        finally:
            for session in stale:
                logger.info("Discarding dead pooled SFTP session.")
                session.close()

        if reused is not None:
            return reused

        try:
            return self._connect(self._config)
        except BaseException:
            with self._cond:
                self._size -= 1
                self._cond.notify()
            raise

    def release(self, session: SftpSession) -> None:
        with self._cond:
            keep = not self._closed and session.is_alive()
            if keep:
                self._idle.append(session)
            else:
                self._size -= 1
            self._cond.notify()
        if not keep:
            logger.info("Closing SFTP session instead of returning it to the pool.")
            session.close()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            idle, self._idle = self._idle, []
            self._size -= len(idle)
            self._cond.notify_all()
        for session in idle:
            session.close()
        logger.info(f"Session pool closed ({len(idle)} idle sessions released).")


def build_session_provider(config: ServerConfig, connect: Connector = open_session) -> SessionProvider:
    """Chooses the provider for the configured session mode."""
    if not config.sftp_known_hosts:
        logger.warning("SFTP_KNOWN_HOSTS is not set: remote host keys will be accepted without verification.")
    if config.sftp_session_mode == "pooled":
        logger.info(f"Using pooled SFTP sessions (max {config.sftp_pool_size}).")
        return SessionPool(config, connect)
    logger.info("Using a fresh SFTP session per request.")
    return PerRequestSessionProvider(config, connect)
