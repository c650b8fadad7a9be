"""
DevGate — Streaming LLM Provider
Tool-calling "generate" over a streamed protocol.

Supported providers:
  - gemini    → Google Gemini (streamGenerateContent SSE over httpx)
  - openai    → OpenAI ChatGPT (via openai SDK streaming)
  - xai       → xAI Grok (openai SDK with custom base_url)
  - deepseek  → DeepSeek (openai SDK with custom base_url)
  - zai       → Z-AI / Zhipu GLM (openai SDK with custom base_url)

Every provider returns the same merged ``ModelResponse``: a Gemini-style
list of parts (``text`` / ``functionCall``) plus usage metadata.
"""

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx

from config import OPENAI_COMPATIBLE_BASE_URLS, Config

log = logging.getLogger("devgate.providers")


class LLMError(RuntimeError):
    """Base error for provider failures surfaced to the caller."""


class LLMAuthError(LLMError):
    """Missing or rejected credentials."""


class LLMTransportError(LLMError):
    """Network failure or non-success HTTP status from the provider."""


# ──────────────────────────────────────────────────────────────
# Stream decoding
# ──────────────────────────────────────────────────────────────


class SSEDecoder:
    """Incremental decoder for the ``data:`` records of a server-sent event stream.

    Network reads can end anywhere: in the middle of a line or even in the middle
    of a multi-byte character. The decoder keeps the incomplete tail buffered and
    only parses whole lines; lines that are not valid JSON objects are dropped.
    """

    def __init__(self):
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: bytes | str) -> list[dict]:
        text = self._utf8.decode(data) if isinstance(data, (bytes, bytearray)) else data
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        return [record for record in map(self._parse_line, lines) if record is not None]

    def flush(self) -> list[dict]:
        """Parse whatever is left once the stream has ended."""
        self._buffer += self._utf8.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        record = self._parse_line(tail)
        return [record] if record is not None else []

    @staticmethod
    def _parse_line(line: str) -> dict | None:
        line = line.rstrip("\r")
        if not line.startswith("data:"):
            return None
        payload = line[5:].strip()
        if not payload or payload == "[DONE]":
            return None
        try:
            record = json.loads(payload)
        except ValueError:
            return None
        return record if isinstance(record, dict) else None


@dataclass
class ModelResponse:
    """One logical model turn merged from streamed chunks."""

    parts: list[dict] = field(default_factory=list)
    usage: dict[str, Any] = field(default_factory=dict)

    def merge_chunk(self, chunk: dict):
        """Fold one streamed record in: parts accumulate, usage is last-write-wins."""
        # Cloud Code style endpoints wrap the payload in {"response": {...}}.
        payload = chunk.get("response", chunk)
        if not isinstance(payload, dict):
            return
        candidates = payload.get("candidates") or []
        if candidates and isinstance(candidates[0], dict):
            content = candidates[0].get("content") or {}
            for part in content.get("parts") or []:
                if isinstance(part, dict):
                    self.parts.append(part)
        if payload.get("usageMetadata"):
            self.usage = dict(payload["usageMetadata"])

    @property
    def function_calls(self) -> list[dict]:
        return [p["functionCall"] for p in self.parts if isinstance(p.get("functionCall"), dict)]

    @property
    def text(self) -> str:
        return "".join(p["text"] for p in self.parts if isinstance(p.get("text"), str) and not p.get("thought"))

    @property
    def total_tokens(self) -> int:
        try:
            return int(self.usage.get("totalTokenCount") or 0)
        except (TypeError, ValueError):
            return 0

    def to_content(self) -> dict:
        return {"role": "model", "parts": list(self.parts)}


def merge_stream(records: Iterable[dict]) -> ModelResponse:
    """Merge already-decoded stream records into a single response."""
    response = ModelResponse()
    for record in records:
        response.merge_chunk(record)
    return response


class OpenAIStreamMerger:
    """Accumulate openai SDK chat-completion chunks into a ``ModelResponse``.

    Text deltas are concatenated and tool-call deltas are joined per index;
    tool arguments that do not parse as a JSON object become ``{}``.
    """

    def __init__(self):
        self._text: list[str] = []
        self._calls: dict[int, dict[str, str]] = {}
        self._usage: dict[str, Any] = {}

    def add(self, chunk: Any):
        usage = getattr(chunk, "usage", None)
        if usage is not None:
            self._usage = {
                "promptTokenCount": getattr(usage, "prompt_tokens", 0) or 0,
                "candidatesTokenCount": getattr(usage, "completion_tokens", 0) or 0,
                "totalTokenCount": getattr(usage, "total_tokens", 0) or 0,
            }
        for choice in getattr(chunk, "choices", None) or []:
            delta = getattr(choice, "delta", None)
            if delta is None:
                continue
            if getattr(delta, "content", None):
                self._text.append(delta.content)
            for tc in getattr(delta, "tool_calls", None) or []:
                slot = self._calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if getattr(tc, "id", None):
                    slot["id"] = tc.id
                function = getattr(tc, "function", None)
                if function is not None:
                    if getattr(function, "name", None):
                        slot["name"] += function.name
                    if getattr(function, "arguments", None):
                        slot["arguments"] += function.arguments

    def result(self) -> ModelResponse:
        parts: list[dict] = []
        text = "".join(self._text)
        if text:
            parts.append({"text": text})
        for index in sorted(self._calls):
            slot = self._calls[index]
            try:
                args = json.loads(slot["arguments"] or "{}")
            except ValueError:
                args = {}
            if not isinstance(args, dict):
                args = {}
            call = {"name": slot["name"], "args": args}
            if slot["id"]:
                call["id"] = slot["id"]
            parts.append({"functionCall": call})
        return ModelResponse(parts=parts, usage=self._usage)


def gemini_tools(declarations: list[dict]) -> list[dict]:
    """Wrap provider-neutral tool declarations for Gemini."""
    return [{"functionDeclarations": list(declarations)}]


def openai_tools(declarations: list[dict]) -> list[dict]:
    return [{"type": "function", "function": decl} for decl in declarations]


def contents_to_openai_messages(system_prompt: str, contents: list[dict]) -> list[dict]:
    """Convert Gemini-style contents into OpenAI chat messages."""
    messages: list[dict] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    for content in contents:
        parts = content.get("parts") or []
        texts = [p["text"] for p in parts if isinstance(p.get("text"), str) and not p.get("thought")]
        calls = [p["functionCall"] for p in parts if "functionCall" in p]
        responses = [p["functionResponse"] for p in parts if "functionResponse" in p]

        if content.get("role") == "model":
            message: dict[str, Any] = {"role": "assistant", "content": "\n".join(texts) or None}
            if calls:
                message["tool_calls"] = [
                    {
                        "id": call.get("id") or f"call_{i}",
                        "type": "function",
                        "function": {
                            "name": call.get("name", ""),
                            "arguments": json.dumps(call.get("args") or {}, ensure_ascii=False),
                        },
                    }
                    for i, call in enumerate(calls)
                ]
            messages.append(message)
            continue

        for i, resp in enumerate(responses):
            messages.append({
                "role": "tool",
                "tool_call_id": resp.get("id") or f"call_{i}",
                "content": json.dumps(resp.get("response") or {}, ensure_ascii=False),
            })
        if texts:
            messages.append({"role": "user", "content": "\n".join(texts)})

    return messages


# ──────────────────────────────────────────────────────────────
# Client
# ──────────────────────────────────────────────────────────────


class LLMClient:
    """
    Unified streaming LLM interface. Routes to the correct backend by provider name.

    ``generate`` sends the system prompt, the full content history and the tool
    declarations, and returns the merged ``ModelResponse``. ``summarize`` runs a
    tool-free, low-temperature request with the summary model.
    """

    def __init__(self, config: Config, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self.provider_name = config.llm_provider
        self.model = config.llm_model
        self.summary_model = config.summary_model or config.llm_model
        self.max_output_tokens = max(512, int(config.max_output_tokens or 8192))
        self._http = http_client
        self._client = None

        self._init_client()

    def _init_client(self):
        """Initialize the appropriate transport for the configured provider."""
        api_key = self.config.api_key_for(self.provider_name)

        if self.provider_name == "gemini":
            if self._http is None:
                self._http = httpx.AsyncClient(timeout=httpx.Timeout(180.0, connect=15.0))
            if not api_key:
                log.warning("GEMINI_API_KEY is not set; LLM calls will fail until it is configured")
            log.info(f"Initialized gemini provider (model: {self.model})")

        elif self.provider_name in OPENAI_COMPATIBLE_BASE_URLS:
            import openai

            if api_key:
                self._client = openai.AsyncOpenAI(
                    api_key=api_key,
                    base_url=OPENAI_COMPATIBLE_BASE_URLS[self.provider_name],
                )
            else:
                log.warning(
                    f"{self.provider_name.upper()}_API_KEY is not set; LLM calls will fail until it is configured"
                )
            log.info(f"Initialized {self.provider_name} provider (model: {self.model})")

        else:
            raise ValueError(
                f"Unknown provider: {self.provider_name!r}. "
                f"Supported: gemini, {', '.join(OPENAI_COMPATIBLE_BASE_URLS)}"
            )

    async def generate(
        self,
        system_prompt: str,
        contents: list[dict],
        tool_schemas: list[dict] | None = None,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> ModelResponse:
        """
        Run one streamed completion and merge it into a single response.

        Args:
            system_prompt: System instruction for the turn.
            contents: Gemini-style history: [{"role": "user"|"model", "parts": [...]}].
            tool_schemas: Tool declarations ({name, description, parameters}).

        Raises:
            LLMAuthError: credentials are missing or rejected.
            LLMTransportError: the request failed or the provider returned an error.
        """
        output_tokens = max(256, int(max_output_tokens or self.max_output_tokens))
        if self.provider_name == "gemini":
            return await self._generate_gemini(
                system_prompt, contents, tool_schemas, model or self.model, temperature, output_tokens
            )
        return await self._generate_openai(
            system_prompt, contents, tool_schemas, model or self.model, temperature, output_tokens
        )

    async def summarize(self, prompt: str) -> str:
        """Tool-free completion used for conversation compaction."""
        response = await self.generate(
            "",
            [{"role": "user", "parts": [{"text": prompt}]}],
            None,
            model=self.summary_model,
            temperature=0.3,
            max_output_tokens=1024,
        )
        return response.text.strip()

    async def aclose(self):
        if self._http is not None:
            await self._http.aclose()
        if self._client is not None:
            await self._client.close()

    # ── Gemini ────────────────────────────────────────────────

    async def _generate_gemini(
        self,
        system_prompt: str,
        contents: list[dict],
        tool_schemas: list[dict] | None,
        model: str,
        temperature: float | None,
        output_tokens: int,
    ) -> ModelResponse:
        """Stream via Gemini's streamGenerateContent endpoint (alt=sse)."""
        api_key = self.config.gemini_api_key
        if not api_key:
            raise LLMAuthError("Not authenticated: GEMINI_API_KEY is not set.")

        generation_config: dict[str, Any] = {"maxOutputTokens": output_tokens}
        if temperature is not None:
            generation_config["temperature"] = temperature

        body: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system_prompt:
            body["systemInstruction"] = {"role": "user", "parts": [{"text": system_prompt}]}
        if tool_schemas:
            body["tools"] = gemini_tools(tool_schemas)

        url = f"{self.config.gemini_api_base.rstrip('/')}/models/{model}:streamGenerateContent"
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}

        decoder = SSEDecoder()
        response = ModelResponse()
        try:
            async with self._http.stream(
                "POST", url, params={"alt": "sse"}, headers=headers, json=body
            ) as resp:
                if resp.status_code in (401, 403):
                    await resp.aread()
                    raise LLMAuthError(f"Gemini rejected the credentials (HTTP {resp.status_code}).")
                if resp.status_code >= 400:
                    detail = (await resp.aread()).decode("utf-8", errors="replace")[:300]
                    raise LLMTransportError(f"Gemini API error {resp.status_code}: {detail}")
                async for raw in resp.aiter_bytes():
                    for record in decoder.feed(raw):
                        response.merge_chunk(record)
            for record in decoder.flush():
                response.merge_chunk(record)
        except httpx.HTTPError as e:
            raise LLMTransportError(f"Gemini request failed: {e}") from e

        return response

    # ── OpenAI-compatible ─────────────────────────────────────

    async def _generate_openai(
        self,
        system_prompt: str,
        contents: list[dict],
        tool_schemas: list[dict] | None,
        model: str,
        temperature: float | None,
        output_tokens: int,
    ) -> ModelResponse:
        """Stream via an OpenAI-compatible chat completions API."""
        import openai

        if self._client is None:
            raise LLMAuthError(f"Not authenticated: {self.provider_name.upper()}_API_KEY is not set.")

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": contents_to_openai_messages(system_prompt, contents),
            "max_tokens": output_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tool_schemas:
            kwargs["tools"] = openai_tools(tool_schemas)
        if temperature is not None:
            kwargs["temperature"] = temperature

        merger = OpenAIStreamMerger()
        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                merger.add(chunk)
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise LLMAuthError(f"{self.provider_name} rejected the credentials: {e}") from e
        except openai.APIError as e:
            raise LLMTransportError(f"{self.provider_name} request failed: {e}") from e

        return merger.result()
