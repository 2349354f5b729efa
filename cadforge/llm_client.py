"""Streaming client for the text-generation service (Anthropic Messages API).

The request is a system instruction plus a single user turn; the reply is
consumed as server-sent events and yielded one text fragment at a time.
``collect_response`` joins the fragments for the parser.
"""

import json
import logging

import requests

from .errors import ModelServiceError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_API_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-3-5-sonnet-latest"


class AnthropicClient:
    """Minimal streaming Messages API client built on ``requests``."""

    def __init__(self, config: dict, api_key: str, http=None):
        model_cfg = config.get("model", {})
        self.model = model_cfg.get("name", DEFAULT_MODEL)
        self.max_tokens = model_cfg.get("max_tokens", 4096)
        self.api_url = model_cfg.get("api_url", DEFAULT_API_URL)
        self.api_version = model_cfg.get("api_version", DEFAULT_API_VERSION)
        self.timeout = model_cfg.get("timeout", 180)
        self.api_key = (api_key or "").strip()
        self.http = http or requests.Session()

    def _headers(self) -> dict:
        return {
            "content-type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
        }

    def stream(self, system: str, content):
        """Yield text fragments of the reply to one user turn.

        *content* is either a string or a list of ``{"type": "text"}`` /
        ``{"type": "image"}`` parts.
        """
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": [{"role": "user", "content": content}],
            "stream": True,
        }
        logger.debug(f"POST {self.api_url} model={self.model}")
        try:
            resp = self.http.post(self.api_url, headers=self._headers(),
                                  data=json.dumps(payload), stream=True,
                                  timeout=self.timeout)
        except requests.RequestException as e:
            raise ModelServiceError("Model request failed: %s" % e) from e

        with resp:
            if resp.status_code >= 400:
                raise ModelServiceError("API error %d: %s" % (resp.status_code, resp.text[:500]))
            try:
                # bytes, decoded as UTF-8 below
                yield from _iter_text_deltas(resp.iter_lines())
            except requests.RequestException as e:
                raise ModelServiceError("Model stream interrupted: %s" % e) from e


def _iter_text_deltas(lines):
    """Pull ``text_delta`` fragments out of an SSE line stream."""
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = (line or "").strip()
        if not line.startswith("data:"):
            continue
        data_str = line[5:].strip()
        if not data_str or data_str == "[DONE]":
            continue
        try:
            event = json.loads(data_str)
        except json.JSONDecodeError:
            logger.debug(f"Ignoring malformed stream line: {data_str[:200]}")
            continue

        kind = event.get("type")
        if kind == "content_block_delta":
            delta = event.get("delta", {})
            if delta.get("type") == "text_delta" and delta.get("text"):
                yield delta["text"]
        elif kind == "error":
            err = event.get("error", {})
            raise ModelServiceError("API error: %s" % (err.get("message") or err))
        elif kind == "message_stop":
            return


def collect_response(fragments, on_chunk=None) -> str:
    """Concatenate streamed *fragments*, passing each to *on_chunk* first."""
    parts = []
    for text in fragments:
        if on_chunk:
            on_chunk(text)
        parts.append(text)
    return "".join(parts)
