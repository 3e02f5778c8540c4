# rest2sftp/core/paths.py - Request path to remote path mapping

import logging
from posixpath import basename
from urllib.parse import quote

from .errors import ErrorKind, OperationError

logger = logging.getLogger(__name__)

PATH_SEPARATOR = "/"


def resolve_remote_path(request_path: str, base_prefix: str, anchored: bool = True) -> str:
    """
    Maps an incoming HTTP path onto the remote filesystem by removing the base prefix.

    Args:
        request_path: The URL path of the request (already percent-decoded).
        base_prefix: Configured prefix; an empty prefix leaves the path untouched.
        anchored: When True the prefix is only removed when it forms the leading
            path segment(s), so '/base' matches '/base/x' but not '/basement/x'.
            When False the first occurrence anywhere in the path is removed.

    Returns:
        The remote path.
    """
    if not base_prefix:
        return request_path
    if anchored:
        segment_prefix = base_prefix.rstrip(PATH_SEPARATOR) + PATH_SEPARATOR
        if request_path == base_prefix or request_path.startswith(segment_prefix):
            remote_path = request_path.removeprefix(base_prefix)
        else:
            remote_path = request_path
    else:
        remote_path = request_path.replace(base_prefix, "", 1)
    logger.debug(f"Resolved request path '{request_path}' -> '{remote_path}'")
    return remote_path


def is_directory(path: str) -> bool:
    """A path names a directory iff it ends with the separator."""
    if not path:
        raise OperationError(ErrorKind.MALFORMED_REQUEST, "empty remote path")
    return path[-1] == PATH_SEPARATOR


def _sanitize_download_filename(name: str, default: str = "download") -> str:
    # Strip header-breaking characters
    name = name.replace("\r", "").replace("\n", "").replace('"', "").strip()
    return name or default


def content_disposition_attachment(remote_path: str) -> str:
    """Builds an attachment Content-Disposition value from the last path segment."""
    filename = _sanitize_download_filename(basename(remote_path.rstrip(PATH_SEPARATOR)))
    if filename.isascii():
        return f'attachment; filename="{filename}"'
    # RFC 5987 form for non-ASCII names, with an ASCII fallback
    fallback = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"
