"""AI prompt block backed by a pydantic-ai agent."""

from __future__ import annotations

import logging
import os
import time

import httpx
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError, UserError
from pydantic_ai.models import Model

from migrator.blocks.base import BaseBlock
from migrator.context import MigrationContext
from migrator.models import BlockResult
from migrator.plan import BlockType

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "anthropic:claude-haiku-4-5"

DEFAULT_INSTRUCTIONS = """\
You are assisting with an automated code migration. Answer the request
precisely and concisely. When asked for code or configuration, return only
that content without commentary.
"""

# Long prompts are truncated in INFO logs
_LOG_PREVIEW = 500


def get_model() -> str:
    """Return the model identifier, overridable via MIGRATOR_MODEL env var."""
    return os.environ.get("MIGRATOR_MODEL", DEFAULT_MODEL)


def _preview(text: str) -> str:
    if len(text) <= _LOG_PREVIEW:
        return text
    return f"{text[:_LOG_PREVIEW]}... ({len(text)} characters)"


class AiPromptBlock(BaseBlock):
    """Renders ``prompt`` against the context and asks the model for a response.

    The rendered prompt is always published as ``prompt``. The response goes
    to ``output_variable`` (and ``ai_response`` when that is renamed). With
    ``generate=False`` the block only renders the prompt, for manual hand-off.
    A failed model call is logged and leaves the prompt-only output in place.
    """

    type = BlockType.AI_PROMPT
    label = "AI Prompt"

    def __init__(
        self,
        name: str,
        prompt: str,
        *,
        output_variable: str = "ai_response",
        instructions: str = DEFAULT_INSTRUCTIONS,
        model: Model | str | None = None,
        generate: bool = True,
        enable_if: str = "",
        description: str = "",
    ) -> None:
        super().__init__(name, enable_if=enable_if, description=description)
        self.prompt = prompt
        self.output_variable = output_variable or "ai_response"
        self.instructions = instructions
        self.model = model
        self.generate = generate

    def validate(self) -> bool:
        if not super().validate():
            return False
        if not self.prompt or not self.prompt.strip():
            logger.error("Prompt cannot be empty: %s", self.name)
            return False
        return True

    def _agent(self) -> Agent:
        return Agent(
            self.model or get_model(),
            instructions=self.instructions,
            defer_model_check=True,
        )

    def execute(self, context: MigrationContext) -> BlockResult:
        start = time.monotonic()
        logger.debug("Available variables: %s", sorted(context.all_variables()))
        prompt = context.substitute(self.prompt) or ""
        logger.info("Resolved AI prompt for %r: %s", self.name, _preview(prompt))

        outputs: dict[str, object] = {"prompt": prompt}
        warnings: list[str] = []

        if self.generate:
            try:
                result = self._agent().run_sync(prompt)
            except (AgentRunError, UserError, httpx.HTTPError) as exc:
                logger.warning("AI call failed for %r, continuing with prompt only: %s", self.name, exc)
                warnings.append(f"AI call failed: {exc}")
            else:
                response = str(result.output)
                logger.info("AI response received for %r: %d characters", self.name, len(response))
                outputs[self.output_variable] = response
                if self.output_variable != "ai_response":
                    outputs["ai_response"] = response

        return BlockResult.succeeded(
            "AI prompt generated successfully",
            output_variables=outputs,
            warnings=warnings,
            execution_time_ms=int((time.monotonic() - start) * 1000),
        )

    def _describe_fields(self) -> list[str]:
        lines = ["- Prompt:", "", "```", self.prompt.strip(), "```"]
        lines.append(f"- Output variable: `{self.output_variable}`")
        return lines
