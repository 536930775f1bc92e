import json

import pytest

from relayrpc.errors import MalformedRequest
from relayrpc.protocol import (
    INVALID_JSON,
    MISSING_METHOD,
    MessageFilter,
    SignedMessage,
    build_filter,
    create_request,
    new_correlation_id,
    parse_request,
    parse_response,
    validate_filter_builder,
)


def _message(**overrides) -> SignedMessage:
    fields = {
        "id": "aa" * 32,
        "pubkey": "bb" * 32,
        "created_at": 1700000000,
        "kind": 4,
        "tags": [["p", "cc" * 32], ["e", "dd" * 32]],
        "content": "x",
        "sig": "",
    }
    fields.update(overrides)
    return SignedMessage(**fields)


class TestEnvelope:
    def test_parse_request(self):
        request = parse_request('{"method": "add", "params": {"a": 1}, "id": "42"}')
        assert request.method == "add"
        assert request.params == {"a": 1}
        assert request.id == "42"

    @pytest.mark.parametrize("body", ["{not json", "[1, 2]", "null", '"add"'])
    def test_invalid_json(self, body):
        with pytest.raises(MalformedRequest) as exc:
            parse_request(body)
        assert exc.value.message == INVALID_JSON

    @pytest.mark.parametrize("body", ['{"id": "1"}', '{"method": ""}', '{"method": 5}'])
    def test_missing_method(self, body):
        with pytest.raises(MalformedRequest) as exc:
            parse_request(body)
        assert exc.value.message == MISSING_METHOD

    def test_lenient_params_and_id(self):
        request = parse_request('{"method": "m", "params": [1, 2], "id": true}')
        assert request.params == {}
        assert request.id is None

    def test_create_request_round_trip(self):
        request = create_request("add", {"a": 5, "b": 3})
        parsed = parse_request(request.model_dump_json())

        assert parsed == request

        reply = json.dumps({"id": request.id, "result": {"sum": 8}, "error": None})
        response = parse_response(reply)
        assert response.id == request.id
        assert response.result == {"sum": 8}
        assert not response.is_error

    def test_correlation_ids_are_unique(self):
        ids = {new_correlation_id() for _ in range(1000)}
        assert len(ids) == 1000
        millis, _, suffix = next(iter(ids)).partition("-")
        assert millis.isdigit()
        assert len(suffix) == 16


class TestMessage:
    def test_tag_accessors(self):
        message = _message()
        assert message.recipient == "cc" * 32
        assert message.reply_to == "dd" * 32
        assert _message(tags=[]).recipient is None

    def test_filter_matches(self):
        message = _message()

        assert MessageFilter().matches(message)
        assert MessageFilter(kinds={4}, authors={"bb" * 32}, recipients={"cc" * 32}).matches(message)
        assert MessageFilter(references={"dd" * 32}, since=1700000000).matches(message)

        assert not MessageFilter(kinds={1}).matches(message)
        assert not MessageFilter(authors={"ee" * 32}).matches(message)
        assert not MessageFilter(recipients={"ee" * 32}).matches(message)
        assert not MessageFilter(since=1700000001).matches(message)
        assert not MessageFilter(until=1699999999).matches(message)

    def test_filter_to_wire(self):
        wire = MessageFilter(kinds={4}, recipients={"cc" * 32}, since=10, limit=5).to_wire()
        assert wire == {"kinds": [4], "#p": ["cc" * 32], "since": 10, "limit": 5}


class TestFilterBuilder:
    def test_without_builder_returns_copy(self):
        base = MessageFilter(kinds={4})
        built = build_filter(base, None, {})
        assert built == base
        assert built is not base

    def test_builder_may_mutate_and_return_none(self):
        base = MessageFilter(kinds={4})

        def builder(candidate, context):
            candidate.limit = context["limit"]

        built = build_filter(base, builder, {"limit": 7})
        assert built.limit == 7
        assert base.limit is None

    def test_builder_replacement(self):
        built = build_filter(MessageFilter(), lambda base, ctx: MessageFilter(kinds={1}), {})
        assert built.kinds == {1}

    def test_builder_must_return_filter(self):
        with pytest.raises(TypeError):
            build_filter(MessageFilter(), lambda base, ctx: {"kinds": [4]}, {})

    def test_non_callable_builder_rejected(self):
        assert validate_filter_builder(None) is None
        with pytest.raises(TypeError):
            validate_filter_builder({"kinds": [4]})
