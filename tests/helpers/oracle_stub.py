"""Test helpers: scripted oracles and a stub for the OpenAI Responses client.

``ScriptedOracle`` stands in for any :class:`ledger_recon.oracle.Oracle`: it
records each :class:`OracleRequest` and answers with a fixed body, a callable
of the request, or raises a given exception. ``OpenAIStub`` mimics the small
part of ``openai.OpenAI`` that :class:`ledger_recon.oracle.OpenAIOracle` uses.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any

from ledger_recon.oracle import OracleRequest
from ledger_recon.prompting import BEGIN_TRANSACTIONS, END_TRANSACTIONS


class ScriptedOracle:
    def __init__(
        self,
        response: Mapping[str, Any] | Callable[[OracleRequest], Mapping[str, Any]] | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        self._response = response
        self._error = error
        self.requests: list[OracleRequest] = []

    def __call__(self, request: OracleRequest) -> Mapping[str, Any]:
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        if callable(self._response):
            return self._response(request)
        return self._response or {}

    @property
    def calls(self) -> int:
        return len(self.requests)


def extract_embedded_json(content: str, begin: str, end: str) -> Any:
    """Return the JSON value embedded between ``begin`` and ``end`` markers."""

    b = content.find(begin)
    e = content.rfind(end)
    if b == -1 or e == -1 or e <= b:
        raise ValueError(f"content has no {begin.strip()} block")
    return json.loads(content[b + len(begin) : e])


def embedded_transactions(request: OracleRequest) -> list[Any]:
    """Return the JSON array embedded between the transaction markers of a request."""

    return extract_embedded_json(request.user_content, BEGIN_TRANSACTIONS, END_TRANSACTIONS)


class _Resp:
    output_text: str


def make_response(payload: Mapping[str, Any]) -> _Resp:
    resp = _Resp()
    resp.output_text = json.dumps(payload)
    return resp


class OpenAIStub:
    """Minimal ``openai.OpenAI`` replacement.

    ``outcome`` is either the response object returned by
    ``responses.create`` or an exception instance to raise from it. Init
    kwargs and every ``create`` call are captured for assertions.
    """

    def __init__(self, outcome: Any = None, **kwargs: Any) -> None:
        self.init_kwargs = kwargs
        self.calls: list[dict[str, Any]] = []
        outer = self

        class _Responses:
            def create(self, **kw: Any) -> Any:
                outer.calls.append(kw)
                if isinstance(outer.outcome, BaseException):
                    raise outer.outcome
                return outer.outcome

        self.outcome = outcome
        self.responses = _Responses()


def openai_factory(outcome: Any, created: list[OpenAIStub]) -> Callable[..., OpenAIStub]:
    """Return a callable to monkeypatch ``ledger_recon.oracle.OpenAI`` with."""

    def _factory(*_a: Any, **kwargs: Any) -> OpenAIStub:
        client = OpenAIStub(outcome, **kwargs)
        created.append(client)
        return client

    return _factory
