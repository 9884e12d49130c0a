"""Normalize a provider token stream into a byte stream with a finalize step.

``NormalizedStream`` is consumed like any async iterator of ``bytes``.  When
the source runs out it fires its completion callback exactly once with the
full text and the final usage object, then resolves ``finalized``.  Callers
that prefer not to use a callback can ``await stream.finalized`` instead.
A stream that will not be drained is abandoned with ``await stream.aclose()``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, AsyncIterable, AsyncIterator, Callable

_logger = logging.getLogger(__name__)

CompletionCallback = Callable[[str, dict[str, int]], None]


def _empty_usage() -> dict[str, int]:
    return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


@dataclass
class StreamSummary:
    """Terminal data of a drained stream."""

    content: str = ""
    usage: dict[str, int] = field(default_factory=_empty_usage)


class NormalizedStream:
    """Byte stream over ``chat.completion.chunk`` dicts.

    Parameters
    ----------
    chunks:
        Async iterable of decoded stream chunks (e.g. ``ChatStream``).
    on_complete:
        Called once with ``(content, usage)`` after the last chunk.
    """

    def __init__(
        self,
        chunks: AsyncIterable[dict[str, Any]],
        on_complete: CompletionCallback | None = None,
    ) -> None:
        self._chunks = chunks
        self._on_complete = on_complete
        self._finalized: asyncio.Future[StreamSummary] = (
            asyncio.get_running_loop().create_future()
        )
        self._started = False
        self._iterator: AsyncGenerator[bytes, None] | None = None
        self._callback_fired = False

    @property
    def finalized(self) -> asyncio.Future[StreamSummary]:
        """Resolves with the ``StreamSummary`` once the stream is drained."""
        return self._finalized

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._started:
            raise RuntimeError("NormalizedStream can only be consumed once")
        self._started = True
        self._iterator = self._iterate()
        return self._iterator

    async def aclose(self) -> None:
        """Stop the stream early, with or without having iterated it.

        Closes the source (and with it the HTTP response) and cancels
        ``finalized`` unless the stream already finished.  Safe to call
        more than once.
        """
        self._started = True
        if self._iterator is not None:
            await self._iterator.aclose()
        # An iterator that never started skips its own cleanup on aclose()
        await self._close_source()
        if not self._finalized.done():
            self._finalized.cancel()

    async def _iterate(self) -> AsyncGenerator[bytes, None]:
        parts: list[str] = []
        usage: dict[str, int] = {}
        try:
            async for chunk in self._chunks:
                if chunk.get("usage"):
                    usage = chunk["usage"]
                choices = chunk.get("choices") or []
                if not choices:
                    continue
                text = (choices[0].get("delta") or {}).get("content")
                if text:
                    parts.append(text)
                    yield text.encode("utf-8")
            self._complete("".join(parts), usage)
        except Exception as exc:
            if not self._finalized.done():
                self._finalized.set_exception(exc)
            raise
        finally:
            await self._close_source()
            if not self._finalized.done():
                # Consumer stopped before the end of the stream
                self._finalized.cancel()

    def _complete(self, content: str, usage: dict[str, int]) -> None:
        if self._callback_fired:
            return
        self._callback_fired = True
        final_usage = {**_empty_usage(), **usage}
        if self._on_complete is not None:
            self._on_complete(content, final_usage)
        self._finalized.set_result(StreamSummary(content=content, usage=final_usage))
        _logger.debug(
            "Stream finished: %d chars, usage=%s", len(content), final_usage,
        )

    async def _close_source(self) -> None:
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()
