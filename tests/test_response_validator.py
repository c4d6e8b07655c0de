"""
Response validator tests.

Covers the status gate, each rule kind, accumulation of failures, the
skip policy for incomplete rules, and purity of ``validate``.
"""

import copy

import pytest

from conftest import make_case
from mcp_tester.type.types_def import (
    ContainsRule,
    CustomRule,
    HasPropertyRule,
    MatchesRule,
    ToolError,
    ToolResponse,
)
from mcp_tester.validator.ResponseValidator import MISSING, ResponseValidator, deep_equal, resolve_path


def success(data):
    return ToolResponse(status="success", data=data)


@pytest.fixture
def validator():
    return ResponseValidator()


class TestResolvePath:
    def test_nested_mapping(self):
        assert resolve_path({"a": {"b": {"c": 1}}}, "a.b.c") == 1

    def test_list_index(self):
        assert resolve_path({"content": [{"text": "x"}, {"text": "y"}]}, "content.1.text") == "y"

    def test_missing_segment_is_absent_not_error(self):
        assert resolve_path({"a": {}}, "a.b.c") is MISSING
        assert resolve_path({"a": [1]}, "a.5") is MISSING
        assert resolve_path({"a": [1]}, "a.first") is MISSING
        assert resolve_path("text", "a") is MISSING

    def test_present_null_is_not_missing(self):
        assert resolve_path({"a": None}, "a") is None


class TestDeepEqual:
    def test_structures(self):
        assert deep_equal({"a": [1, {"b": "c"}]}, {"a": [1, {"b": "c"}]})
        assert not deep_equal({"a": [1, 2]}, {"a": [2, 1]})
        assert not deep_equal({"a": 1}, {"a": 1, "b": 2})

    def test_booleans_are_not_numbers(self):
        assert not deep_equal(True, 1)
        assert not deep_equal(0, False)
        assert deep_equal(True, True)

    def test_int_and_float(self):
        assert deep_equal(1, 1.0)


class TestStatusGate:
    def test_status_mismatch_short_circuits(self, validator):
        case = make_case(
            "echo", "1",
            rules=[ContainsRule(target="text", value="x"), HasPropertyRule(target="missing")],
        )
        response = ToolResponse(status="error", error=ToolError(message="boom"))

        result = validator.validate(response, case)

        assert result.valid is False
        assert len(result.errors) == 1
        assert result.errors[0] == "Expected status: success, got: error (boom)"

    def test_expected_error_satisfied_by_status_alone(self, validator):
        case = make_case("echo", "1", status="error", rules=[ContainsRule(target="text", value="never")])
        response = ToolResponse(status="error", data={"text": "something else"})

        result = validator.validate(response, case)

        assert result.valid is True
        assert result.errors == []

    def test_unexpected_success(self, validator):
        case = make_case("echo", "1", status="error")
        result = validator.validate(success({}), case)
        assert result.errors == ["Expected status: error, got: success"]


class TestContainsRule:
    @pytest.mark.parametrize(
        "target, value, expected",
        [
            ("hello world", "world", True),
            (["a", "b"], "b", True),
            (42, "4", False),
            ("hello", "xyz", False),
            ([{"id": 1}], {"id": 1}, True),
            ([1, 2], True, False),
            ("port 8080", 8080, True),
        ],
    )
    def test_contains(self, validator, target, value, expected):
        case = make_case("echo", "1", rules=[ContainsRule(target="result", value=value)])
        result = validator.validate(success({"result": target}), case)
        assert result.valid is expected

    def test_absent_target_fails(self, validator):
        case = make_case("echo", "1", rules=[ContainsRule(target="result", value="x")])
        result = validator.validate(success({}), case)
        assert result.valid is False


class TestMatchesRule:
    def test_regex_passes(self, validator):
        case = make_case("echo", "1", rules=[MatchesRule(target="build", value=r"/^build-\d+$/")])
        assert validator.validate(success({"build": "build-123"}), case).valid is True

    def test_regex_fails(self, validator):
        case = make_case("echo", "1", rules=[MatchesRule(target="build", value="/^ship-/")])
        assert validator.validate(success({"build": "build-123"}), case).valid is False

    def test_regex_against_non_string_fails(self, validator):
        case = make_case("echo", "1", rules=[MatchesRule(target="build", value="/123/")])
        assert validator.validate(success({"build": 123}), case).valid is False

    def test_invalid_regex_is_reported(self, validator):
        case = make_case("echo", "1", rules=[MatchesRule(target="build", value="/[unclosed/")])
        result = validator.validate(success({"build": "x"}), case)
        assert result.valid is False
        assert "invalid regular expression" in result.errors[0]

    def test_deep_equality(self, validator):
        expected = {"items": [1, 2], "total": 2}
        case = make_case("echo", "1", rules=[MatchesRule(target="page", value=expected)])
        assert validator.validate(success({"page": {"items": [1, 2], "total": 2}}), case).valid is True
        assert validator.validate(success({"page": {"items": [1], "total": 1}}), case).valid is False

    def test_plain_string_is_exact_equality(self, validator):
        case = make_case("echo", "1", rules=[MatchesRule(target="text", value="build")])
        assert validator.validate(success({"text": "build-123"}), case).valid is False
        assert validator.validate(success({"text": "build"}), case).valid is True


class TestHasPropertyRule:
    def test_empty_array_counts_as_present(self, validator):
        case = make_case("echo", "1", rules=[HasPropertyRule(target="data.items")])
        assert validator.validate(success({"data": {"items": []}}), case).valid is True

    def test_missing_property_fails(self, validator):
        case = make_case("echo", "1", rules=[HasPropertyRule(target="data.items")])
        result = validator.validate(success({"data": {}}), case)
        assert result.valid is False
        assert result.errors == ["Expected property data.items to exist"]

    def test_null_value_counts_as_present(self, validator):
        case = make_case("echo", "1", rules=[HasPropertyRule(target="data.cursor")])
        assert validator.validate(success({"data": {"cursor": None}}), case).valid is True

    def test_value_names_a_sub_property(self, validator):
        case = make_case("echo", "1", rules=[HasPropertyRule(target="data", value="items")])
        assert validator.validate(success({"data": {"items": []}}), case).valid is True
        assert validator.validate(success({"data": {}}), case).valid is False


class TestCustomRule:
    def test_attached_predicate_sees_full_data(self, validator):
        seen = []

        def predicate(data):
            seen.append(data)
            return data["count"] == 2

        case = make_case("echo", "1", rules=[CustomRule(target="ignored", predicate=predicate)])
        assert validator.validate(success({"count": 2}), case).valid is True
        assert seen == [{"count": 2}]

    def test_registered_predicate_by_name(self):
        validator = ResponseValidator(custom_validators={"non_empty": lambda data: bool(data.get("content"))})
        case = make_case("echo", "1", rules=[CustomRule(value="non_empty", message="content is empty")])

        assert validator.validate(success({"content": [1]}), case).valid is True
        assert validator.validate(success({"content": []}), case).errors == ["content is empty"]

    def test_raising_predicate_fails(self, validator):
        def predicate(data):
            raise KeyError("count")

        case = make_case("echo", "1", rules=[CustomRule(predicate=predicate)])
        result = validator.validate(success({}), case)
        assert result.valid is False
        assert "KeyError" in result.errors[0]

    def test_predicate_cannot_mutate_response(self, validator):
        def predicate(data):
            data["count"] = 99
            return True

        response = success({"count": 1})
        case = make_case("echo", "1", rules=[CustomRule(predicate=predicate)])
        validator.validate(response, case)
        assert response.data == {"count": 1}

    def test_without_predicate_is_skipped(self, validator):
        case = make_case("echo", "1", rules=[CustomRule(value="unregistered")])
        assert validator.validate(success({}), case).valid is True


class TestSkipPolicy:
    @pytest.mark.parametrize(
        "rule",
        [
            ContainsRule(),
            ContainsRule(target="text"),
            ContainsRule(value="x"),
            MatchesRule(),
            MatchesRule(target="text"),
            HasPropertyRule(),
        ],
    )
    def test_incomplete_rule_is_skipped(self, validator, rule):
        case = make_case("echo", "1", rules=[rule])
        result = validator.validate(success({"text": "abc"}), case)
        assert result.valid is True
        assert result.errors == []


class TestAccumulation:
    def test_all_failures_are_reported_in_order(self, validator):
        case = make_case(
            "echo", "1",
            rules=[
                ContainsRule(target="text", value="zzz", message="first"),
                HasPropertyRule(target="text"),
                MatchesRule(target="text", value="/^q/", message="second"),
                HasPropertyRule(target="nope", message="third"),
            ],
        )
        result = validator.validate(success({"text": "abc"}), case)
        assert result.valid is False
        assert result.errors == ["first", "second", "third"]


class TestPurity:
    def test_same_inputs_same_verdict_and_no_mutation(self, validator):
        data = {"content": [{"type": "text", "text": "hello world"}], "meta": {"tags": ["a"]}}
        response = success(data)
        case = make_case(
            "echo", "1",
            rules=[
                ContainsRule(target="content.0.text", value="world"),
                ContainsRule(target="meta.tags", value="b"),
                HasPropertyRule(target="meta.missing"),
            ],
        )
        data_before = copy.deepcopy(response.data)
        case_before = case.model_dump()

        first = validator.validate(response, case)
        second = validator.validate(response, case)

        assert first == second
        assert first.valid is False
        assert len(first.errors) == 2
        assert response.data == data_before
        assert case.model_dump() == case_before
