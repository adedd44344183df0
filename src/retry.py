"""
Create-until-visible helper.

Absorbs eventual-consistency lag in the store: a create that fails for a
reason other than "already exists" may still have landed, and a record the
store reports as existing may not be readable yet, so the record is polled
for until it shows up or the time budget runs out.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Union

from errors import AlreadyExistsError, StoreError

logger = logging.getLogger(__name__)

Log = Union[logging.Logger, logging.LoggerAdapter]


async def create_until_visible(
    create: Callable[[], Awaitable[Any]],
    fetch: Callable[[], Awaitable[Any]],
    interval: float,
    timeout: float,
    log: Log = logger,
) -> Any:
    """
    Create a record and return it once it is visible in the store.

    Args:
        create: Coroutine function creating the record and returning it.
        fetch: Coroutine function fetching the record by name.
        interval: Seconds between fetch attempts.
        timeout: Total seconds to keep polling when the create did not return
            the record.
        log: Logger for this reconcile pass.

    Returns:
        The created record, or the existing one if it was already there.

    Raises:
        StoreError: The original create error if the record never appeared,
            or the last fetch error if an existing record could not be read
            in time.
    """
    create_error = None
    try:
        return await create()
    except AlreadyExistsError:
        log.info("record already exists, fetching it")
    except StoreError as e:
        create_error = e
        log.warning(f"create failed, waiting for record to become visible: {e}")

    loop = asyncio.get_running_loop()
    start_time = loop.time()

    while True:
        try:
            return await fetch()
        except StoreError as e:
            fetch_error = e
            log.debug(f"error polling for record: {e}")

        elapsed = loop.time() - start_time
        if elapsed >= timeout:
            log.error(f"record not visible after {elapsed:.1f}s, giving up")
            raise create_error if create_error is not None else fetch_error

        log.debug(f"record not visible yet, waiting {interval}s...")
        await asyncio.sleep(interval)
