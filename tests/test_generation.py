import json
import threading

import pytest
import requests

from postchat.errors import UpstreamError
from postchat.generation import AnswerStream, build_payload, parse_event_line
from tests.conftest import FakeStreamResponse


def _event(text):
    return ("data: " + json.dumps({"message": {"content": text}})).encode("utf-8")


class TestParseEventLine:
    def test_extracts_content(self):
        assert parse_event_line(_event("Hel")) == "Hel"

    def test_accepts_str_lines(self):
        assert parse_event_line('data: {"message": {"content": "lo"}}') == "lo"

    @pytest.mark.parametrize(
        "line",
        [
            b"",
            b"event: ping",
            b'{"message": {"content": "no marker"}}',
            b"data: [DONE]",
            b"data: {not json",
            b"data: [1, 2]",
            b'data: {"message": "flat"}',
            b'data: {"message": {"content": ""}}',
            b'data: {"message": {"content": 5}}',
            b'data: {"done": true}',
        ],
    )
    def test_ignored_lines(self, line):
        assert parse_event_line(line) is None


def test_build_payload_puts_context_in_system_message():
    payload = build_payload("llama3", "CTX", "Q?")
    assert payload["model"] == "llama3"
    assert payload["stream"] is True
    assert payload["messages"] == [
        {"role": "system", "content": "CTX"},
        {"role": "user", "content": "Q?"},
    ]


class TestGenerationClient:
    def test_stream_yields_fragments_in_order(self, generator, http_session):
        stream = generator.stream_answer("CTX", "What is a dog?")

        assert [f.text for f in stream] == ["Dogs ", "are loyal."]
        assert stream.answer == "Dogs are loyal."
        assert stream.delivered == 2
        assert http_session.post.return_value.closed

        kwargs = http_session.post.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["json"]["messages"][0]["content"] == "CTX"

    def test_noise_lines_produce_exactly_one_fragment(self, generator, http_session):
        http_session.post.return_value = FakeStreamResponse([_event("only"), b"data: {broken", b"data: [DONE]"])

        fragments = list(generator.stream_answer("CTX", "q"))

        assert [f.text for f in fragments] == ["only"]

    def test_connect_failure_is_upstream_error(self, generator, http_session):
        http_session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(UpstreamError):
            generator.stream_answer("CTX", "q")

    def test_http_error_status_is_upstream_error(self, generator, http_session):
        response = FakeStreamResponse([], status_code=503)
        http_session.post.return_value = response

        with pytest.raises(UpstreamError, match="503"):
            generator.stream_answer("CTX", "q")
        assert response.closed


class TestAnswerStream:
    def test_read_error_before_first_fragment_raises(self):
        stream = AnswerStream(FakeStreamResponse([requests.ConnectionError("reset")]))

        with pytest.raises(UpstreamError):
            list(stream)
        assert stream.delivered == 0

    def test_read_error_after_fragment_ends_stream(self):
        stream = AnswerStream(FakeStreamResponse([_event("partial"), requests.ConnectionError("reset")]))

        assert [f.text for f in stream] == ["partial"]
        assert stream.answer == "partial"
        assert not stream.cancelled

    def test_cancel_stops_between_reads(self):
        cancel = threading.Event()
        response = FakeStreamResponse([_event("one"), _event("two"), _event("three")])
        stream = AnswerStream(response, cancel=cancel)

        received = []
        for fragment in stream:
            received.append(fragment.text)
            cancel.set()

        assert received == ["one"]
        assert stream.cancelled
        assert response.closed

    def test_single_pass(self):
        stream = AnswerStream(FakeStreamResponse([_event("a")]))
        list(stream)

        with pytest.raises(RuntimeError):
            iter(stream)

    def test_relay_sends_encoded_fragments(self):
        stream = AnswerStream(FakeStreamResponse([_event("Hel"), b"data: [DONE]", _event("lo")]))
        sent = []

        count = stream.relay(sent.append)

        assert count == 2
        assert [json.loads(s) for s in sent] == [{"text": "Hel"}, {"text": "lo"}]

    def test_close_is_idempotent(self):
        response = FakeStreamResponse([])
        with AnswerStream(response) as stream:
            stream.close()
        assert response.closed
