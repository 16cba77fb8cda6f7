"""
Bounded collaborator calls.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from ordersaga.core.exceptions import GatewayError

T = TypeVar("T")


async def bounded(step: str, awaitable: Awaitable[T], timeout: float) -> T:
    """
    Await a repository or gateway call with a timeout.

    Raises:
        GatewayError: If the call does not finish within ``timeout`` seconds
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as e:
        msg = f"Step '{step}' timed out after {timeout}s"
        raise GatewayError(msg, details={"step": step}) from e
