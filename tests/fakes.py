"""Deterministic LLM fakes used across the test suite."""

from __future__ import annotations

import json
import re
from typing import Callable

from explanation_tree.llm.client import ChatMessage, GenerateResult

CHILD_LINE = re.compile(r"^- id=(\S+)(?: complexity=\S+)? statement=(.*)$", re.MULTILINE)


def children_from_prompt(messages: list[ChatMessage]) -> list[tuple[str, str]]:
    """(id, statement) pairs listed in the user message, in prompt order."""
    return [
        (child_id, json.loads(statement))
        for child_id, statement in CHILD_LINE.findall(messages[1].content)
    ]


def faithful_summary(messages: list[ChatMessage]) -> dict:
    """A summary that restates the children and cites all of them."""
    children = children_from_prompt(messages)
    statement = "; ".join(text for _, text in children)
    return {
        "parent_statement": statement,
        "why_true_from_children": statement,
        "new_terms_introduced": [],
        "complexity_score": 3,
        "abstraction_score": 3,
        "evidence_refs": [child_id for child_id, _ in children],
        "confidence": 0.9,
    }


class FakeLlmClient:
    """Deterministic client; ``respond`` maps (messages, call number) to raw text."""

    def __init__(
        self,
        respond: Callable[[list[ChatMessage], int], str] | None = None,
    ) -> None:
        self.calls: list[list[ChatMessage]] = []
        self._respond = respond or (lambda messages, _: json.dumps(faithful_summary(messages)))

    async def generate(self, messages, *, temperature=None, max_output_tokens=None):
        self.calls.append(messages)
        text = self._respond(messages, len(self.calls))
        return GenerateResult(text=text, model="fake-model", finish_reason="stop")

    async def stream(self, messages, *, temperature=None, max_output_tokens=None):
        result = await self.generate(messages)
        yield result.text
