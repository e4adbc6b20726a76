"""Provider adapter interface for generation calls."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(slots=True, frozen=True)
class Usage:
    """Token counters reported by a provider."""

    input_tokens: int = 0
    output_tokens: int = 0


class TextStream:
    """Single-use iterator of text deltas from a streaming provider call.

    The underlying source yields `str` deltas and, usually last, a `Usage`
    with the final token counts. `usage` is only final once iteration has
    completed; completion callbacks run at that point, and the source is
    closed however iteration ends.
    """

    def __init__(
        self,
        source: Iterable[str | Usage],
        *,
        close: Callable[[], None] | None = None,
    ) -> None:
        self._source = source
        self._close = close
        self._callbacks: list[Callable[[Usage], None]] = []
        self.usage = Usage()
        self.completed = False

    def __iter__(self) -> Iterator[str]:
        try:
            for item in self._source:
                if isinstance(item, Usage):
                    self.usage = item
                    continue
                yield item
        finally:
            self.close()
        self.completed = True
        for callback in self._callbacks:
            callback(self.usage)

    def on_complete(self, callback: Callable[[Usage], None]) -> None:
        self._callbacks.append(callback)

    def close(self) -> None:
        if self._close is not None:
            close, self._close = self._close, None
            close()

    def read(self) -> str:
        """Consume the stream and return the concatenated text."""

        return "".join(self)


@dataclass(slots=True)
class ProviderCall:
    """Inputs required to execute one provider attempt."""

    provider: str
    model_id: str
    messages: list[dict[str, str]]
    max_tokens: int
    temperature: float
    schema: dict[str, Any] | None = None
    object_name: str = "generated_object"
    session: Mapping[str, str] | None = field(default=None, repr=False)


@dataclass(slots=True)
class ProviderResponse:
    """Adapter result: `text`, `object` or `stream` depending on the call."""

    usage: Usage
    text: str | None = None
    object: Any = None
    stream: TextStream | None = None


class ProviderAdapter(Protocol):
    """Protocol implemented by provider adapters."""

    def generate_text(self, call: ProviderCall) -> ProviderResponse:
        """Generate free-form text."""

    def generate_object(self, call: ProviderCall) -> ProviderResponse:
        """Generate a structured object matching `call.schema`."""

    def stream_text(self, call: ProviderCall) -> ProviderResponse:
        """Open a text stream; errors while opening are raised here."""
