"""Language-model oracle boundary.

An oracle is any callable taking an :class:`OracleRequest` and returning the
decoded JSON object of the model's structured output. It raises
:class:`~ledger_recon.errors.OracleUnavailable` on transport failures and
:class:`~ledger_recon.errors.SchemaMismatch` when no JSON object can be
decoded. Callers still re-validate every field: the declared schema is never
assumed to have been honored.

:class:`OpenAIOracle` implements the protocol over the OpenAI Responses API.
No side effects occur at import time (no client creation, no environment
reads); the SDK's built-in retry loop is disabled because failed oracle calls
are propagated, never retried.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import openai
from openai import OpenAI

from .errors import OracleUnavailable, SchemaMismatch
from .logging_setup import get_logger
from .models import SourceDocument
from .settings import Settings

_logger = get_logger("ledger_recon.oracle")


@dataclass(frozen=True, slots=True)
class OracleRequest:
    """One structured oracle call.

    ``task`` is a short stable name used in logs (e.g. ``"reconcile"``).
    ``response_format`` is a strict JSON-schema text format object from
    :mod:`ledger_recon.prompting`.
    """

    task: str
    instructions: str
    user_content: str
    response_format: Mapping[str, Any]
    document: SourceDocument | None = None


class Oracle(Protocol):
    def __call__(self, request: OracleRequest) -> Mapping[str, Any]: ...


def extract_response_json(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON object from an OpenAI Responses SDK result.

    Prefers ``resp.output_text``; falls back to walking ``resp.output`` for
    the first text content node.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        for item in getattr(resp, "output", None) or []:
            for node in getattr(item, "content", None) or []:
                candidate = getattr(node, "text", None)
                if not isinstance(candidate, str):
                    candidate = getattr(candidate, "value", None)
                if isinstance(candidate, str) and candidate:
                    text = candidate
                    break
            if text:
                break
    if not text or not isinstance(text, str):
        raise SchemaMismatch("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaMismatch("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise SchemaMismatch("Model output must be a JSON object at top level")
    return decoded


def _build_input(request: OracleRequest) -> str | list[dict[str, Any]]:
    doc = request.document
    if doc is None:
        return request.user_content
    content: list[dict[str, Any]] = [{"type": "input_text", "text": request.user_content}]
    if doc.is_image:
        content.append({"type": "input_image", "image_url": doc.data_uri, "detail": "high"})
    else:
        content.append(
            {
                "type": "input_file",
                "filename": doc.filename or "document.pdf",
                "file_data": doc.data_uri,
            }
        )
    return [{"role": "user", "content": content}]


def _create_client(settings: Settings) -> OpenAI:
    return OpenAI(timeout=settings.timeout_sec, max_retries=0)


class OpenAIOracle:
    """Oracle backed by ``client.responses.create`` with a strict JSON schema."""

    def __init__(self, settings: Settings | None = None, *, client: OpenAI | None = None) -> None:
        self._settings = settings or Settings()
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = _create_client(self._settings)
        return self._client

    def __call__(self, request: OracleRequest) -> Mapping[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._settings.model,
            "instructions": request.instructions,
            "input": _build_input(request),
            "text": {"format": dict(request.response_format)},
        }
        if self._settings.temperature is not None:
            kwargs["temperature"] = self._settings.temperature

        t0 = time.perf_counter()
        try:
            resp = self._get_client().responses.create(**kwargs)
        except openai.APIError as e:
            dt_ms = (time.perf_counter() - t0) * 1000.0
            _logger.error(
                "oracle:failed task=%s latency_ms=%.2f error=%s",
                request.task,
                dt_ms,
                e.__class__.__name__,
            )
            raise OracleUnavailable(f"{request.task}: {e.__class__.__name__}: {e}") from e

        decoded = extract_response_json(resp)
        _logger.info(
            "oracle:done task=%s latency_ms=%.2f",
            request.task,
            (time.perf_counter() - t0) * 1000.0,
        )
        return decoded


__all__ = ["OpenAIOracle", "Oracle", "OracleRequest", "extract_response_json"]
