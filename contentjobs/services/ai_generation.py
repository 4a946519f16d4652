"""Template-driven AI generation over HTTP.

Templates are prompt strings formatted with the caller's context. The
endpoint is expected to answer with JSON; the generated text is parsed as a
JSON object (bare, fenced, or embedded in prose).
"""
from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx

from contentjobs import config
from contentjobs.errors import GenerationError
from contentjobs.observability import start_span

logger = logging.getLogger("contentjobs.ai")


TEMPLATES: dict[str, str] = {
    "post:generation": (
        "You write blog posts for {author}.\n"
        "{prompt}\n\n"
        "Respond with a JSON object with the string fields "
        '"title", "content" (markdown, no frontmatter) and "excerpt" (one or two sentences).'
    ),
    "post:excerpt": (
        "Write a one or two sentence excerpt for the blog post below.\n\n"
        "{prompt}\n\n"
        'Respond with a JSON object with a single string field "excerpt".'
    ),
}


class TemplateGenerator(Protocol):
    async def generate(self, template_name: str, context: dict[str, Any]) -> dict[str, Any]:
        ...


def render_template(template_name: str, context: dict[str, Any]) -> str:
    template = TEMPLATES.get(template_name)
    if template is None:
        raise GenerationError(f"Unknown generation template: {template_name}")
    values = {"author": config.AUTHOR_NAME or "the site owner", "prompt": ""}
    values.update({key: value for key, value in context.items() if value is not None})
    try:
        return template.format(**values)
    except KeyError as exc:
        raise GenerationError(f"Missing context value {exc} for template {template_name}") from exc


def parse_json_object(content: str) -> dict[str, Any]:
    text = (content or "").strip()
    if not text:
        raise GenerationError("Empty generation output")
    if text.startswith("```"):
        lines = text.splitlines()[1:]
        if lines and lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        text = "\n".join(lines).strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise GenerationError("No JSON object in generation output") from None
        try:
            parsed = json.loads(text[start : end + 1])
        except json.JSONDecodeError as exc:
            raise GenerationError(f"Malformed JSON in generation output: {exc}") from exc
    if not isinstance(parsed, dict):
        raise GenerationError(f"Generation output is {type(parsed).__name__}, expected an object")
    return parsed


class HttpTemplateGenerator:
    """Posts rendered prompts to an Ollama-style ``/api/generate`` endpoint."""

    def __init__(
        self,
        endpoint: str | None = None,
        *,
        model: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint or config.AI_ENDPOINT
        self.model = model if model is not None else config.AI_MODEL
        self.api_key = api_key if api_key is not None else config.AI_API_KEY
        self.timeout = timeout or config.AI_TIMEOUT_SECONDS
        self._transport = transport

    async def generate(self, template_name: str, context: dict[str, Any]) -> dict[str, Any]:
        prompt = render_template(template_name, context)
        payload: dict[str, Any] = {"prompt": prompt, "stream": False, "format": "json"}
        if self.model:
            payload["model"] = self.model
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        with start_span("ai.generate", {"ai.template": template_name, "ai.model": self.model or None}):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(self.endpoint, json=payload, headers=headers)
                    resp.raise_for_status()
                    data = resp.json()
            except httpx.HTTPError as exc:
                raise GenerationError(f"Generation request failed: {exc}") from exc
            except ValueError as exc:
                raise GenerationError(f"Generation endpoint returned invalid JSON: {exc}") from exc

        if isinstance(data, dict) and isinstance(data.get("response"), str):
            result = parse_json_object(data["response"])
        elif isinstance(data, dict):
            result = data
        else:
            raise GenerationError(f"Generation endpoint returned {type(data).__name__}, expected an object")
        logger.debug("Generated %s with keys %s", template_name, sorted(result))
        return result
