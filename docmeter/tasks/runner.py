"""
Bridge from synchronous Celery tasks to the async service layer.
"""
import asyncio
import threading
from typing import Any, Awaitable, Callable

from docmeter.services.container import Services, build_services, create_store


def run_async(func: Callable[[Services], Awaitable[Any]]) -> Any:
    """
    Build worker services and run func(services) to completion.

    Uses asyncio.run when no loop is running in this thread; otherwise runs
    on a fresh loop in a helper thread.
    """
    async def _main():
        services = build_services(create_store(worker=True))
        return await func(services)

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_main())

    result = None
    error = None

    def run_in_thread():
        nonlocal result, error
        try:
            result = asyncio.run(_main())
        except BaseException as e:
            error = e

    thread = threading.Thread(target=run_in_thread)
    thread.start()
    thread.join()
    if error is not None:
        raise error
    return result
