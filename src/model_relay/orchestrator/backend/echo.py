"""Local deterministic adapter for smoke checks and tests."""

from __future__ import annotations

from collections.abc import Iterator

from model_relay.orchestrator.backend.base import (
    ProviderCall,
    ProviderResponse,
    TextStream,
    Usage,
)


class EchoAdapter:
    """Echo the last user message back; token counts are whitespace word counts."""

    def generate_text(self, call: ProviderCall) -> ProviderResponse:
        prompt = _last_user_message(call)
        return ProviderResponse(text=prompt, usage=_echo_usage(call, prompt))

    def generate_object(self, call: ProviderCall) -> ProviderResponse:
        response = self.generate_text(call)
        return ProviderResponse(
            object={call.object_name: response.text},
            usage=response.usage,
        )

    def stream_text(self, call: ProviderCall) -> ProviderResponse:
        """Stream the echoed prompt word by word."""

        prompt = _last_user_message(call)

        def chunks() -> Iterator[str | Usage]:
            for index, word in enumerate(prompt.split(" ")):
                yield word if index == 0 else f" {word}"
            yield _echo_usage(call, prompt)

        return ProviderResponse(stream=TextStream(chunks()), usage=Usage())


def _echo_usage(call: ProviderCall, prompt: str) -> Usage:
    return Usage(
        input_tokens=sum(len(message["content"].split()) for message in call.messages),
        output_tokens=len(prompt.split()),
    )


def _last_user_message(call: ProviderCall) -> str:
    for message in reversed(call.messages):
        if message.get("role") == "user":
            return message["content"]
    return ""
