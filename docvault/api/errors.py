from __future__ import annotations

from functools import partial
from typing import Any, Callable, TypeVar

from fastapi import HTTPException
from fastapi.concurrency import run_in_threadpool

from docvault.core.errors import DocVaultError

T = TypeVar("T")


def as_http_exception(exc: DocVaultError) -> HTTPException:
    detail: dict[str, Any] = {"code": exc.code, "message": exc.message}
    if exc.resource_id:
        detail["resource_id"] = exc.resource_id
    return HTTPException(status_code=exc.status_code, detail=detail)


async def call_service(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking service call off the event loop and translate engine errors."""
    try:
        return await run_in_threadpool(partial(func, *args, **kwargs))
    except DocVaultError as exc:
        raise as_http_exception(exc) from exc
