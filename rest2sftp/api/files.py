# rest2sftp/api/files.py - Catch-all router translating HTTP requests into SFTP operations

import logging
from contextlib import AsyncExitStack
from typing import AsyncIterator, Awaitable, Callable, Dict, Tuple

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.concurrency import iterate_in_threadpool, run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from ..core.errors import ErrorKind, OperationError, wrap
from ..core.operations import (
    STAGE_POST_FILE,
    Download,
    create_directory,
    list_directory,
    open_download,
    remove_directory,
    remove_file,
    upload_file,
)
from ..core.paths import is_directory, resolve_remote_path
from ..core.sftp_session import SftpSession
from ..utils.cleanup import close_quietly, release_session, run_teardown
from ..utils.responses import respond_no_content, respond_with_json

logger = logging.getLogger(__name__)

UPLOAD_FORM_FIELD = "file"
SUPPORTED_METHODS = ("GET", "POST", "DELETE")

router = APIRouter(tags=["Remote Files"])

Operation = Callable[[Request, SftpSession, str, AsyncExitStack], Awaitable[Response]]


# --- Directory handlers ---

async def get_folder(request: Request, session: SftpSession, path: str, cleanup: AsyncExitStack) -> Response:
    logger.info(f"handle get folder: '{path}'")
    listing = await run_in_threadpool(list_directory, session, path)
    return respond_with_json(status.HTTP_200_OK, listing)


async def post_folder(request: Request, session: SftpSession, path: str, cleanup: AsyncExitStack) -> Response:
    logger.info(f"handle post folder: '{path}'")
    await run_in_threadpool(create_directory, session, path)
    return respond_no_content(status.HTTP_200_OK)


async def delete_folder(request: Request, session: SftpSession, path: str, cleanup: AsyncExitStack) -> Response:
    logger.info(f"handle delete folder: '{path}'")
    await run_in_threadpool(remove_directory, session, path)
    return respond_no_content(status.HTTP_200_OK)


# --- File handlers ---

async def _stream_download(download: Download, path: str, cleanup: AsyncExitStack) -> AsyncIterator[bytes]:
    """
    Yields the file body, then closes the remote handle and releases the session.

    Status line and headers are already sent when this runs, so a failure can
    only cut the body short; clients notice through the Content-Length mismatch.
    """
    sent = 0
    async with cleanup:
        try:
            async for chunk in iterate_in_threadpool(download.chunks()):
                sent += len(chunk)
                yield chunk
        except Exception as e:
            logger.error(f"Get file error: stream of '{path}' aborted after {sent} of {download.size} bytes: {e}", exc_info=True)
            raise
    logger.debug(f"Streamed {sent} bytes of '{path}'")


class DownloadResponse(StreamingResponse):
    """
    Streams a download and owns its remote handle and session.

    The body generator releases them when it finishes; `__call__` releases them
    too, covering a response that fails or is cancelled before the body starts.
    """

    def __init__(self, download: Download, path: str, cleanup: AsyncExitStack):
        super().__init__(
            _stream_download(download, path, cleanup),
            status_code=status.HTTP_200_OK,
            headers=download.headers,
        )
        self.cleanup = cleanup

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # No-op when the body generator already unwound the stack
            await self.cleanup.aclose()


async def get_file(request: Request, session: SftpSession, path: str, cleanup: AsyncExitStack) -> Response:
    logger.info(f"handle get file: '{path}'")
    download = await run_in_threadpool(open_download, session, path)
    cleanup.push_async_callback(run_teardown, close_quietly, download.handle, f"remote file '{path}'")

    # The response now owns the remote handle and the session
    return DownloadResponse(download, path, cleanup.pop_all())


async def post_file(request: Request, session: SftpSession, path: str, cleanup: AsyncExitStack) -> Response:
    logger.info(f"handle post file: '{path}'")
    try:
        form = await request.form()
    except (StarletteHTTPException, MultiPartException) as e:
        logger.error(f"form upload file error for '{path}': {e}")
        detail = getattr(e, "detail", None) or getattr(e, "message", None) or str(e)
        raise wrap(OperationError(ErrorKind.MALFORMED_REQUEST, detail), STAGE_POST_FILE) from e
    cleanup.push_async_callback(form.close)

    upload = form.get(UPLOAD_FORM_FIELD)
    if not isinstance(upload, UploadFile):
        logger.error(f"form upload file error for '{path}': no '{UPLOAD_FORM_FIELD}' file part")
        raise wrap(
            OperationError(ErrorKind.MALFORMED_REQUEST, f"no such file: multipart field '{UPLOAD_FORM_FIELD}' is missing"),
            STAGE_POST_FILE,
        )

    await run_in_threadpool(upload_file, session, path, upload.file)
    return respond_no_content(status.HTTP_200_OK)


async def delete_file(request: Request, session: SftpSession, path: str, cleanup: AsyncExitStack) -> Response:
    logger.info(f"handle delete file: '{path}'")
    await run_in_threadpool(remove_file, session, path)
    return respond_no_content(status.HTTP_200_OK)


# (method, is_directory) -> handler
OPERATIONS: Dict[Tuple[str, bool], Operation] = {
    ("GET", True): get_folder,
    ("GET", False): get_file,
    ("POST", True): post_folder,
    ("POST", False): post_file,
    ("DELETE", True): delete_folder,
    ("DELETE", False): delete_file,
}


def method_not_allowed(method: str, path: str) -> Response:
    """Plain-text answer for any method other than GET, POST and DELETE."""
    logger.warning(f"Rejected unsupported method {method} for '{path}'")
    return PlainTextResponse(
        f"Method not allow {method}",
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        headers={"Allow": ", ".join(SUPPORTED_METHODS)},
    )


@router.api_route("/{full_path:path}", methods=list(SUPPORTED_METHODS), include_in_schema=False)
async def dispatch(request: Request, full_path: str) -> Response:
    """
    Routes every request onto a remote operation.

    A trailing '/' selects the directory variant of the method. The session is
    released when the handler returns, or when a download stream finishes.
    """
    method = request.method
    config = request.app.state.config
    remote_path = resolve_remote_path(request.url.path, config.rest_base_path, anchored=config.rest_base_path_anchored)
    operation = OPERATIONS.get((method, is_directory(remote_path)))
    if operation is None:
        return method_not_allowed(method, request.url.path)

    provider = request.app.state.session_provider
    async with AsyncExitStack() as cleanup:
        session = await run_in_threadpool(provider.acquire)
        cleanup.push_async_callback(run_teardown, release_session, provider, session)
        return await operation(request, session, remote_path, cleanup)
