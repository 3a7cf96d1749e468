"""Per-adapter request pacing."""

import asyncio


class RateLimiter:
    """Enforces a minimum interval between calls on one event loop."""

    def __init__(self, min_interval: float = 0.5):
        self.min_interval = min_interval
        self.last_call: float | None = None

    async def wait(self) -> None:
        """Wait if needed to respect the interval."""
        loop = asyncio.get_running_loop()
        if self.last_call is not None:
            elapsed = loop.time() - self.last_call
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
        self.last_call = loop.time()
