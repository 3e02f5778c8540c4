# rest2sftp/utils/cleanup.py - Utility functions for releasing resources

import logging

import anyio
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


def close_quietly(resource, description: str) -> None:
    """Closes a file handle or form part, logging failures instead of raising."""
    if resource is None:
        return
    try:
        resource.close()
    except Exception as e:
        # A failing close must not mask the error or response already being produced
        logger.error(f"Error closing {description}: {e}", exc_info=True)


def release_session(provider, session) -> None:
    """Returns a session to its provider; used once a request (or its stream) is done."""
    try:
        provider.release(session)
        logger.debug("Released SFTP session.")
    except Exception as e:
        logger.error(f"Error releasing SFTP session: {e}", exc_info=True)


async def run_teardown(func, *args) -> None:
    """
    Runs a blocking teardown call in the thread pool.

    Shielded from cancellation: a client disconnect cancels the request task,
    and the remote handle and session still have to be released.
    """
    with anyio.CancelScope(shield=True):
        await run_in_threadpool(func, *args)
