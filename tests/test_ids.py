from __future__ import annotations

import pytest

from gts_viewer.ids import (
    canonical_id,
    find_similar_entity_ids,
    instance_schema_prefix,
    is_instance_identifier,
    is_type_identifier,
    is_valid_identifier,
    levenshtein_distance,
    normalize,
    parse_chain_parts,
)

VALID_IDS = [
    "gts.x.core.events.type.v1",
    "gts.x.core.events.type.v1~",
    "gts.x.core.events.type.v1.0~",
    "gts.x.core.events.type.v0~",
    "gts.x.core.events.type.v10.2~x.core.events.user_created.v1",
    "gts.a.b.c.d.v1~x.y.z.w.v2~",
    "gts.a.b.c.d.v1~x.y.z.w.v2~p.q.r.s.v3",
]


@pytest.mark.parametrize("value", VALID_IDS)
def test_valid_identifiers_match_grammar(value: str) -> None:
    assert is_valid_identifier(value)
    assert is_valid_identifier(f"  {value}  ")


@pytest.mark.parametrize(
    "value",
    [
        "",
        "gts",
        "gts.x.core.events.v1",  # three segments
        "gts.X.core.events.type.v1",  # uppercase
        "gts.x.core.events.type.v01",  # leading zero
        "gts.x.core.events.type.v1~~",
        "gts.x.core.events.type",  # no version
        "x.core.events.type.v1",  # missing prefix
        "gts.x.core.events.type.v1~partial",
        "gts.x.core.events.type.v1\u0663~",  # arabic-indic digit
        "gts.x.core.events.type.v\uff11",  # fullwidth digit
    ],
)
def test_invalid_identifiers_are_rejected(value: str) -> None:
    assert not is_valid_identifier(value)


def test_non_strings_are_never_identifiers() -> None:
    assert not is_valid_identifier(None)
    assert not is_valid_identifier(42)
    assert not is_type_identifier(["gts.x.core.events.type.v1~"])


def test_type_and_instance_identifiers() -> None:
    assert is_type_identifier("gts.x.core.events.type.v1~")
    assert not is_type_identifier("gts.x.core.events.type.v1~x.core.events.a.v1")
    assert is_instance_identifier("gts.x.core.events.type.v1~x.core.events.a.v1")
    assert not is_instance_identifier("gts.x.core.events.type.v1~")


@pytest.mark.parametrize("value", [v for v in VALID_IDS if "~" not in v] + ["plain-text", "x.y"])
def test_parse_chain_parts_without_tilde_returns_whole_id(value: str) -> None:
    assert parse_chain_parts(value) == [value]


def test_parse_chain_parts_splits_at_first_tilde_only() -> None:
    assert parse_chain_parts("gts.a.b.c.d.v1~x.y.z.w.v2") == ["gts.a.b.c.d.v1~", "x.y.z.w.v2"]
    assert parse_chain_parts("gts.a.b.c.d.v1~x.y.z.w.v2~p.q.r.s.v3") == [
        "gts.a.b.c.d.v1~",
        "x.y.z.w.v2~p.q.r.s.v3",
    ]
    assert parse_chain_parts("gts.a.b.c.d.v1~") == ["gts.a.b.c.d.v1~"]


def test_normalize_strips_uri_wrapper_and_encoding() -> None:
    assert normalize("gts://gts.x.core.events.type.v1~") == "gts.x.core.events.type.v1~"
    assert normalize("gts.x.core.events.type.v1%7E") == "gts.x.core.events.type.v1~"
    assert normalize("gts.x.core.events.type.v1%257E") == "gts.x.core.events.type.v1~"
    assert normalize("  gts.x.core.events.type.v1~ ") == "gts.x.core.events.type.v1~"


def test_canonical_id_keeps_non_identifiers_trimmed() -> None:
    assert canonical_id("gts://gts.x.core.events.type.v1~") == "gts.x.core.events.type.v1~"
    assert canonical_id("  #/definitions/address ") == "#/definitions/address"


def test_instance_schema_prefix_uses_last_tilde() -> None:
    assert instance_schema_prefix("gts.a.b.c.d.v1~x.y.z.w.v2") == "gts.a.b.c.d.v1~"
    assert instance_schema_prefix("gts.a.b.c.d.v1~x.y.z.w.v2~p.q.r.s.v3") == "gts.a.b.c.d.v1~x.y.z.w.v2~"
    assert instance_schema_prefix("gts.a.b.c.d.v1~") is None
    assert instance_schema_prefix("gts.a.b.c.d.v1") is None
    assert instance_schema_prefix("not-an-id~x") is None


def test_levenshtein_distance() -> None:
    assert levenshtein_distance("", "") == 0
    assert levenshtein_distance("abc", "") == 3
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("flaw", "lawn") == 2


def test_find_similar_entity_ids_orders_by_distance_without_cutoff() -> None:
    candidates = [
        "gts.x.core.events.order.v1~",
        "gts.x.core.events.user.v2~",
        "completely-unrelated-identifier",
        "gts.x.core.events.user.v1~",
    ]
    result = find_similar_entity_ids("gts.x.core.events.usr.v1~", candidates)
    assert result[0] == "gts.x.core.events.user.v1~"
    assert len(result) == 3
    assert "completely-unrelated-identifier" not in result

    # no distance threshold: far candidates are still returned
    assert find_similar_entity_ids("zzz", ["a-very-long-candidate"], max_results=3) == ["a-very-long-candidate"]
    assert find_similar_entity_ids("zzz", candidates, max_results=0) == []
