"""Call sync or async handlers uniformly.

Route handlers and audit sinks can be ``def`` or ``async def``. This
module keeps the sync/async check in exactly one place.
"""

import inspect
from typing import Any


async def invoke(handler: Any, *args: Any, **kwargs: Any) -> Any:
    """Call a handler and await the result if it's a coroutine."""
    result = handler(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
