from __future__ import annotations

import pytest

from iotview.decoder import DecodedSample, extract_series, parse_json, payload_text


def test_array_payload_labels_positionally() -> None:
    sample = extract_series(b"[1, 2, 3]")
    assert sample == DecodedSample(labels=("v1", "v2", "v3"), values=(1.0, 2.0, 3.0))


def test_array_payload_truncated_to_max_series() -> None:
    sample = extract_series("[1, 2, 3, 4, 5, 6]")
    assert sample is not None
    assert sample.labels == ("v1", "v2", "v3", "v4")
    assert sample.values == (1.0, 2.0, 3.0, 4.0)


def test_array_skips_non_numeric_elements() -> None:
    sample = extract_series('["id", 7, true, null, 8.5]')
    assert sample is not None
    assert sample.labels == ("v1", "v2")
    assert sample.values == (7.0, 8.5)


def test_object_payload_filters_and_sorts_by_key() -> None:
    sample = extract_series(b'{"b": 2, "a": 1, "c": "x"}')
    assert sample is not None
    assert sample.labels == ("a", "b")
    assert sample.values == (1.0, 2.0)


def test_object_payload_keeps_first_four_sorted_keys() -> None:
    sample = extract_series('{"e": 5, "d": 4, "c": 3, "b": 2, "a": 1}')
    assert sample is not None
    assert sample.labels == ("a", "b", "c", "d")


def test_custom_max_series() -> None:
    sample = extract_series("[1, 2, 3]", max_series=2)
    assert sample is not None
    assert len(sample) == 2


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"",
        b"42",
        b'"text"',
        b"null",
        b"true",
        b"[]",
        b'["a", "b"]',
        b"{}",
        b'{"flag": true, "name": "x"}',
        b"[NaN, 1]",
        b'{"t": Infinity}',
    ],
)
def test_unusable_payloads_are_dropped(payload: bytes) -> None:
    assert extract_series(payload) is None


def test_booleans_are_not_numbers() -> None:
    sample = extract_series('{"on": true, "t": 1}')
    assert sample is not None
    assert sample.labels == ("t",)


def test_huge_integer_becomes_infinity() -> None:
    sample = extract_series("[" + "9" * 400 + "]")
    assert sample is not None
    assert sample.values[0] == float("inf")


def test_invalid_utf8_is_replaced_not_raised() -> None:
    assert payload_text(b"\xff[1]") == "�[1]"
    assert extract_series(b"\xff[1]") is None


def test_parse_json_deep_nesting_returns_none() -> None:
    assert parse_json("[" * 100_000 + "]" * 100_000) is None
