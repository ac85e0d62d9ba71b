import asyncio
import contextlib
import inspect
import uuid
from datetime import datetime, timezone

# -------------------------------------------------------------- #
# Generators
# -------------------------------------------------------------- #


def generate_variable_char_uuid(length: int) -> str:
    """Generate a unique identifier of specified length."""
    if length <= 0 or length > 32:
        raise ValueError("Length must be between 1 and 32")
    return uuid.uuid4().hex[:length]


def generate_16_char_uuid() -> str:
    """Generate a unique 16-character identifier."""
    return generate_variable_char_uuid(16)


# -------------------------------------------------------------- #
# Util Functions
# -------------------------------------------------------------- #


def get_current_timestamp() -> datetime:
    """Get the current UTC timestamp."""
    return datetime.now(timezone.utc)


def format_elapsed_label(elapsed_seconds: float) -> str:
    """
    Format elapsed seconds as a zero-padded HH:MM:SS label.

    Negative values (clock skew) clamp to 00:00:00.
    """
    total = max(0, int(elapsed_seconds))
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


async def invoke_callback(callback, *args) -> None:
    """Call a sync or async callback and await it if needed."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


async def cancel_task(task: asyncio.Task | None) -> bool:
    """Cancel a pending task and wait for it to finish. Returns True if a cancel was issued."""
    if task is None or task.done():
        return False
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    return True
