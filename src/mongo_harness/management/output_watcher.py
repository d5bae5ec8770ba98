"""Incremental capture and pattern search over process output."""

import asyncio
import re
import threading
import time
from typing import IO, Iterable, List, Optional, Pattern, Union

from ..config.logging import get_logger

logger = get_logger(__name__)

OutputPattern = Union[str, Pattern[str]]


class OutputWatcher:
    """Append-only text buffer shared by a pump thread and the controlling task.

    Output is flushed asynchronously by the watched process, so a pattern
    missing right after an action is not proof of absence. Use ``wait_for`` or
    ``expect_absent`` for definite answers.
    """

    def __init__(self, name: str = "output"):
        self.name = name
        self._chunks: List[str] = []
        self._lock = threading.Lock()

    def append(self, chunk: str) -> None:
        if not chunk:
            return
        with self._lock:
            self._chunks.append(chunk)

    def text(self) -> str:
        with self._lock:
            return "".join(self._chunks)

    def reset(self) -> None:
        with self._lock:
            self._chunks.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(chunk) for chunk in self._chunks)

    def find(self, pattern: OutputPattern) -> Optional[str]:
        """Return the first match of ``pattern`` in the whole buffer."""
        text = self.text()
        if isinstance(pattern, str):
            return pattern if pattern in text else None
        match = pattern.search(text)
        return match.group(0) if match else None

    def contains(self, pattern: OutputPattern) -> bool:
        return self.find(pattern) is not None

    def contains_any(self, patterns: Iterable[OutputPattern]) -> bool:
        return any(self.contains(pattern) for pattern in patterns)

    async def wait_for(
        self,
        pattern: OutputPattern,
        timeout: float = 10.0,
        poll_interval: float = 0.05,
        max_poll_interval: float = 1.0,
    ) -> bool:
        """Poll with exponential backoff until ``pattern`` appears or time runs out."""
        deadline = time.monotonic() + timeout
        delay = poll_interval

        while True:
            if self.contains(pattern):
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(
                    "Pattern not found before timeout",
                    watcher=self.name,
                    pattern=_describe(pattern),
                    timeout=timeout,
                )
                return False
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, max_poll_interval)

    async def expect_absent(
        self,
        pattern: OutputPattern,
        grace: float = 2.0,
        poll_interval: float = 0.05,
        max_poll_interval: float = 0.5,
    ) -> bool:
        """True only if ``pattern`` stays absent for the whole grace window."""
        found = await self.wait_for(
            pattern,
            timeout=grace,
            poll_interval=poll_interval,
            max_poll_interval=max_poll_interval,
        )
        return not found


class OutputPump(threading.Thread):
    """Background reader copying a process stream into watchers line by line."""

    def __init__(
        self,
        stream: IO[str],
        watchers: Iterable[OutputWatcher],
        prefix: str = "",
        name: Optional[str] = None,
    ):
        super().__init__(name=name or "output-pump", daemon=True)
        self.stream = stream
        self.watchers = list(watchers)
        self.prefix = prefix

    def run(self) -> None:
        try:
            for line in iter(self.stream.readline, ""):
                # First watcher gets the raw line, the rest get the prefixed one
                for index, watcher in enumerate(self.watchers):
                    watcher.append(line if index == 0 else f"{self.prefix}{line}")
        except (OSError, ValueError) as e:
            # Stream closed underneath us during teardown
            logger.debug("Output pump stopped", pump=self.name, error=str(e))
        finally:
            try:
                self.stream.close()
            except OSError:
                pass

    async def drain(self, timeout: float) -> bool:
        """Wait off the event loop for the stream to hit EOF.

        Returns:
            bool: True when the pump finished within ``timeout``
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.join, timeout)
        return not self.is_alive()


def _describe(pattern: OutputPattern) -> str:
    return pattern if isinstance(pattern, str) else pattern.pattern


def compile_pattern(pattern: str, ignore_case: bool = False) -> Pattern[str]:
    """Compile a literal string into a regex usable with the watcher."""
    flags = re.IGNORECASE if ignore_case else 0
    return re.compile(re.escape(pattern), flags)
