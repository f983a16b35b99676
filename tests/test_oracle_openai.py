from types import SimpleNamespace

import httpx
import openai
import pytest

import ledger_recon.oracle as oracle_mod
from ledger_recon.errors import OracleUnavailable, SchemaMismatch
from ledger_recon.models import SourceDocument
from ledger_recon.oracle import OpenAIOracle, OracleRequest, extract_response_json
from ledger_recon.settings import Settings
from tests.helpers.oracle_stub import OpenAIStub, make_response, openai_factory

FORMAT = {"type": "json_schema", "name": "x", "schema": {"type": "object"}, "strict": True}


def _request(document: SourceDocument | None = None) -> OracleRequest:
    return OracleRequest(
        task="categorize",
        instructions="Be precise.",
        user_content="BEGIN_TRANSACTIONS_JSON\n[]\nEND_TRANSACTIONS_JSON",
        response_format=FORMAT,
        document=document,
    )


def test_decodes_output_text_and_sends_schema(monkeypatch):
    created: list[OpenAIStub] = []
    monkeypatch.setattr(oracle_mod, "OpenAI", openai_factory(make_response({"ok": 1}), created))

    body = OpenAIOracle(Settings(model="gpt-test", timeout_sec=9.0))(_request())

    assert body == {"ok": 1}
    (client,) = created
    assert client.init_kwargs == {"timeout": 9.0, "max_retries": 0}
    (call,) = client.calls
    assert call["model"] == "gpt-test"
    assert call["instructions"] == "Be precise."
    assert call["input"].startswith("BEGIN_TRANSACTIONS_JSON")
    assert call["text"] == {"format": FORMAT}
    assert "temperature" not in call


def test_client_is_created_lazily_and_reused(monkeypatch):
    created: list[OpenAIStub] = []
    monkeypatch.setattr(oracle_mod, "OpenAI", openai_factory(make_response({}), created))

    oracle = OpenAIOracle()
    assert created == []
    oracle(_request())
    oracle(_request())
    assert len(created) == 1
    assert len(created[0].calls) == 2


def test_temperature_only_sent_when_configured():
    client = OpenAIStub(make_response({}))
    OpenAIOracle(Settings(temperature=0.2), client=client)(_request())
    assert client.calls[0]["temperature"] == 0.2


def test_image_document_is_attached_as_input_image():
    client = OpenAIStub(make_response({}))
    page = SourceDocument(data=b"\x89PNG", mime_type="image/png")

    OpenAIOracle(client=client)(_request(page))

    (message,) = client.calls[0]["input"]
    kinds = [part["type"] for part in message["content"]]
    assert kinds == ["input_text", "input_image"]
    assert message["content"][1]["image_url"].startswith("data:image/png;base64,")


def test_pdf_document_is_attached_as_input_file():
    client = OpenAIStub(make_response({}))
    pdf = SourceDocument(data=b"%PDF", mime_type="application/pdf", filename="aug.pdf")

    OpenAIOracle(client=client)(_request(pdf))

    part = client.calls[0]["input"][0]["content"][1]
    assert part["type"] == "input_file"
    assert part["filename"] == "aug.pdf"


def test_transport_error_is_oracle_unavailable():
    error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com"))
    oracle = OpenAIOracle(client=OpenAIStub(error))

    with pytest.raises(OracleUnavailable) as exc:
        oracle(_request())
    assert "categorize" in str(exc.value)


def test_non_json_output_is_schema_mismatch():
    resp = SimpleNamespace(output_text="Sure! Here are your rows.")
    with pytest.raises(SchemaMismatch):
        OpenAIOracle(client=OpenAIStub(resp))(_request())


def test_extract_response_json_walks_output_content():
    resp = SimpleNamespace(
        output_text="",
        output=[
            SimpleNamespace(content=None),
            SimpleNamespace(content=[SimpleNamespace(text=SimpleNamespace(value='{"a": [1]}'))]),
        ],
    )
    assert extract_response_json(resp) == {"a": [1]}


@pytest.mark.parametrize(
    "resp",
    [
        SimpleNamespace(output_text="[1, 2]"),
        SimpleNamespace(output_text=None, output=[]),
        SimpleNamespace(),
    ],
)
def test_extract_response_json_rejects_unusable_shapes(resp):
    with pytest.raises(SchemaMismatch):
        extract_response_json(resp)
