import json

from graphchat.pipeline.config import FALLBACK_QUERY
from graphchat.pipeline.models import ConversationMessage, Credentials, SchemaDescriptor
from graphchat.pipeline.synthesizer import QuerySynthesizer

SCHEMA = SchemaDescriptor(["Character"], ["妻子"], {"Character": ["name"]})
CREDS = Credentials(llm_api_key="sk-test", model_name="gpt-4o-mini", llm_base_url="https://llm.example/v1")
MESSAGES = [ConversationMessage("user", "Who is Zhang's wife?")]


class FakeCompletion:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def __call__(self, messages, **kwargs):
        self.calls.append((messages, kwargs))
        if self.error is not None:
            raise self.error
        return self.reply, {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}


def test_synthesize_parses_reply_and_passes_settings():
    body = json.dumps({"cypherQuery": "MATCH (a)-[:妻子]-(b) RETURN a, b", "explanation": "wife lookup"})
    completion = FakeCompletion(reply=body)
    synth = QuerySynthesizer(completion_fn=completion)

    result = synth.synthesize(MESSAGES, SCHEMA, CREDS)

    assert result.value.query_text == "MATCH (a)-[:妻子]-(b) RETURN a, b"
    assert result.value.explanation == "wife lookup"
    assert result.messages("synthesize") == ["parsed with json_body"]
    _, kwargs = completion.calls[0]
    assert kwargs == {"api_key": "sk-test", "base_url": "https://llm.example/v1", "model": "gpt-4o-mini", "temperature": 0.1}
    assert synth.last_usage["total_tokens"] == 15


def test_prompt_carries_schema_and_cap():
    synth = QuerySynthesizer(completion_fn=FakeCompletion(), result_cap=25)

    prompt = synth.build_messages(MESSAGES, SCHEMA)

    assert prompt[0]["role"] == "system"
    assert "- Character (Properties: name)" in prompt[0]["content"]
    assert "- 妻子" in prompt[0]["content"]
    assert "at most 25" in prompt[0]["content"]
    assert prompt[1] == {"role": "user", "content": "Who is Zhang's wife?"}


def test_llm_failure_falls_back_to_default_query():
    synth = QuerySynthesizer(completion_fn=FakeCompletion(error=RuntimeError("401 Unauthorized")))

    result = synth.synthesize(MESSAGES, SCHEMA, CREDS)

    assert result.value.query_text == FALLBACK_QUERY
    assert "error occurred" in result.value.explanation
    diag = result.diagnostics[0]
    assert (diag.stage, diag.message, diag.detail) == ("synthesize", "LLM call failed", "401 Unauthorized")
    assert result.ok


def test_unparsable_reply_falls_back():
    synth = QuerySynthesizer(completion_fn=FakeCompletion(reply="Sorry, I can't do that."), fallback_query="MATCH (n:Node) RETURN n LIMIT 25")

    result = synth.synthesize(MESSAGES, SCHEMA, CREDS)

    assert result.value.query_text == "MATCH (n:Node) RETURN n LIMIT 25"
    assert result.messages("synthesize") == ["unparsable LLM response"]


def test_missing_key_never_calls_the_provider():
    completion = FakeCompletion(reply="{}")
    synth = QuerySynthesizer(completion_fn=completion)

    result = synth.synthesize(MESSAGES, SCHEMA, Credentials())

    assert completion.calls == []
    assert result.value.query_text == FALLBACK_QUERY
    assert result.messages() == ["LLM API key missing"]


def test_trace_records_model_and_raw_reply():
    body = '{"cypherQuery": "MATCH (n) RETURN n", "explanation": "all"}'
    trace = {}

    QuerySynthesizer(completion_fn=FakeCompletion(reply=body)).synthesize(MESSAGES, SCHEMA, CREDS, trace=trace)

    assert trace == {"model": "gpt-4o-mini", "message_count": 2, "raw": body}
