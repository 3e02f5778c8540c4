# rest2sftp/core/operations.py - Directory and file operations over an SFTP session
#
# These functions block on network round trips; the API layer runs them in
# the worker thread pool.

import logging
import shutil
import stat
from contextlib import contextmanager
from dataclasses import dataclass
from typing import BinaryIO, Iterator

from .errors import ErrorKind, OperationError, wrap
from .paths import content_disposition_attachment
from .sftp_session import SftpSession
from .sniff import SNIFF_LENGTH, detect_content_type
from ..models.files import DirectoryListing, RemoteEntry
from ..utils.cleanup import close_quietly

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 32 * 1024

# --- Stage descriptions attached to error messages ---
STAGE_LIST_DIRECTORY = "read directory error"
STAGE_CREATE_DIRECTORY = "Create directory error"
STAGE_DELETE_DIRECTORY = "Delete directory error"
STAGE_GET_FILE = "Get file error"
STAGE_POST_FILE = "Post file error"
STAGE_CREATE_FILE = "create file error"
STAGE_COPY_FILE = "Copy file error"
STAGE_DELETE_FILE = "Delete file error"


@contextmanager
def stage(description: str, path: str) -> Iterator[None]:
    """Wraps any failure inside the block with the stage description."""
    try:
        yield
    except OperationError as e:
        logger.error(f"{description} for '{path}': {e}")
        raise wrap(e, description) from e
    except Exception as e:
        logger.error(f"{description} for '{path}': unexpected {type(e).__name__}: {e}", exc_info=True)
        raise wrap(e, description) from e


# --- Directory operations ---

def list_directory(session: SftpSession, path: str) -> DirectoryListing:
    """Lists a remote directory, keeping the order the server returned."""
    with stage(STAGE_LIST_DIRECTORY, path):
        entries = session.list(path)
    listing = DirectoryListing(files=[RemoteEntry.from_attributes(attrs) for attrs in entries])
    logger.info(f"Listed '{path}': {len(listing.files)} entries")
    return listing


def create_directory(session: SftpSession, path: str) -> None:
    with stage(STAGE_CREATE_DIRECTORY, path):
        session.mkdir_all(path)
    logger.info(f"Created directory '{path}'")


def remove_directory(session: SftpSession, path: str) -> None:
    with stage(STAGE_DELETE_DIRECTORY, path):
        session.remove_dir(path)
    logger.info(f"Removed directory '{path}'")


# --- File operations ---

@dataclass
class Download:
    """An opened remote file, positioned at offset 0, plus its response headers."""
    handle: BinaryIO
    size: int
    content_type: str
    content_disposition: str

    @property
    def headers(self) -> dict:
        return {
            "Content-Disposition": self.content_disposition,
            "Content-Type": self.content_type,
            "Content-Length": str(self.size),
        }

    def chunks(self, chunk_size: int = COPY_CHUNK_SIZE) -> Iterator[bytes]:
        while True:
            chunk = self.handle.read(chunk_size)
            if not chunk:
                return
            yield chunk


def open_download(session: SftpSession, path: str) -> Download:
    """
    Prepares a remote file for streaming.

    Stats the file, reads the first min(size, 512) bytes to sniff the content
    type, then rewinds so the whole file can be streamed from the start.

    Raises:
        OperationError: Wrapped with "Get file error". A directory path is
            rejected as MALFORMED_REQUEST.
    """
    with stage(STAGE_GET_FILE, path):
        attrs = session.stat(path)
        if stat.S_ISDIR(attrs.st_mode or 0):
            raise OperationError(ErrorKind.MALFORMED_REQUEST, f"{path} is a directory")
        size = attrs.st_size or 0
        handle = session.open(path)

    try:
        with stage(STAGE_GET_FILE, path):
            sample = handle.read(min(size, SNIFF_LENGTH))
            content_type = detect_content_type(sample)
            handle.seek(0)
    except OperationError:
        close_quietly(handle, f"remote file '{path}'")
        raise

    logger.info(f"Serving '{path}' ({size} bytes, {content_type})")
    return Download(
        handle=handle,
        size=size,
        content_type=content_type,
        content_disposition=content_disposition_attachment(path),
    )


def upload_file(session: SftpSession, path: str, source: BinaryIO) -> None:
    """
    Streams `source` into the remote file at `path`, replacing any existing content.

    The remote handle is closed on every exit path; the caller owns `source`.
    """
    with stage(STAGE_CREATE_FILE, path):
        remote = session.create(path)

    try:
        with stage(STAGE_COPY_FILE, path):
            shutil.copyfileobj(source, remote, COPY_CHUNK_SIZE)
            remote.close()  # flushes buffered writes, so failures surface here
    finally:
        close_quietly(remote, f"remote file '{path}'")
    logger.info(f"Uploaded file '{path}'")


def remove_file(session: SftpSession, path: str) -> None:
    with stage(STAGE_DELETE_FILE, path):
        session.remove(path)
    logger.info(f"Removed file '{path}'")
