"""Test doubles shared across the test modules."""

import json
from typing import Any

from config import Settings


def make_settings(**overrides: Any) -> Settings:
    """Settings with a fake shared key and every delay switched off."""
    values: dict[str, Any] = {
        "gemini_api_key": "test-key",
        "stage1_api_key": "",
        "stage2_api_key": "",
        "stage3_api_key": "",
        "stage_delay": 0,
        "attempt_delay": 0,
        "retry_base_delay": 0,
        "name_rules_file": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def gemini_response(payload: Any) -> dict:
    """Wrap a payload (or raw text) the way generateContent returns it."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}


class FakeLLM:
    """Scripted model: returns queued responses in order, raising queued exceptions."""

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def generate(self, prompt: str, *, temperature: float, max_output_tokens: int) -> dict:
        self.calls.append({"prompt": prompt, "temperature": temperature, "max_output_tokens": max_output_tokens})
        if not self.responses:
            return {}
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    @property
    def temperatures(self) -> list[float]:
        return [c["temperature"] for c in self.calls]
