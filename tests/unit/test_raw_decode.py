"""Tests for decoding the generator's loose document into a StoryGraph."""

from __future__ import annotations

from typing import Any

import pytest

from branchwright.models.raw import (
    DEFAULT_CHOICE_TEXT,
    DEFAULT_CONTENT,
    DocumentDecodeError,
    RawNodeEmpty,
    RawNodeObject,
    RawNodeText,
    decode_graph,
    ending_type_for,
    parse_generator_output,
    strip_code_fence,
    tag_node_entry,
)
from branchwright.models.story import SENTINEL_TARGET


class TestTagNodeEntry:
    def test_object_entry(self) -> None:
        assert tag_node_entry({"content": "x"})["kind"] == "object"

    def test_bare_string_is_text(self) -> None:
        assert tag_node_entry("Once upon a time") == {
            "kind": "text",
            "content": "Once upon a time",
        }

    @pytest.mark.parametrize("value", [None, {}, "", "   ", 42, ["a"], {"unrelated": 1}])
    def test_placeholders_are_empty(self, value: Any) -> None:
        assert tag_node_entry(value) == {"kind": "empty"}


class TestDecodeNodes:
    def test_node_shapes(self, messy_document: dict[str, Any]) -> None:
        graph = decode_graph(messy_document)

        assert set(graph.nodes) == {"node_start", "node_1", "n_2", "n_3", "node_4"}
        assert graph.nodes["node_4"].content == "A bare string becomes the content."
        assert graph.nodes["node_4"].choices == []

    def test_text_array_joined_with_newlines(self, messy_document: dict[str, Any]) -> None:
        graph = decode_graph(messy_document)
        assert graph.nodes["node_start"].content == "The storm rolls in.\nThe lamp flickers."

    def test_single_string_becomes_one_element_list(
        self, messy_document: dict[str, Any]
    ) -> None:
        graph = decode_graph(messy_document)
        assert graph.nodes["node_1"].characters == ["c_mara"]

    def test_node_id_defaults_to_key(self) -> None:
        graph = decode_graph({"nodes": {"a": {"content": "x"}, "b": {"nodeId": "bee"}}})
        assert graph.nodes["a"].id == "a"
        assert graph.nodes["b"].id == "bee"
        assert graph.nodes["b"].content == DEFAULT_CONTENT

    def test_choice_defaults(self) -> None:
        graph = decode_graph({"nodes": {"start": {"content": "x", "choices": [{}]}}})
        choice = graph.nodes["start"].choices[0]
        assert choice.text == DEFAULT_CHOICE_TEXT
        assert choice.target == SENTINEL_TARGET
        assert choice.effect is None

    def test_non_object_choices_are_skipped(self) -> None:
        graph = decode_graph(
            {"nodes": {"start": {"content": "x", "choices": ["go", None, {"text": "ok"}]}}}
        )
        assert [c.text for c in graph.nodes["start"].choices] == ["ok"]

    def test_effect_without_delta_is_dropped(self) -> None:
        doc = {
            "nodes": {
                "start": {
                    "content": "x",
                    "choices": [
                        {"text": "a", "affinityEffect": {"characterId": "Mara"}},
                        {"text": "b", "affinityEffect": {"characterId": "Mara", "delta": "7"}},
                        {"text": "c", "affinityEffect": {"delta": 3}},
                    ],
                }
            }
        }
        choices = decode_graph(doc).nodes["start"].choices
        assert choices[0].effect is None
        assert choices[1].effect is not None
        assert choices[1].effect.delta == 7
        assert choices[2].effect is None

    def test_level_accepts_numeric_strings(self) -> None:
        graph = decode_graph({"nodes": {"start": {"content": "x", "level": "3"}}})
        assert graph.nodes["start"].level == 3

    @pytest.mark.parametrize(
        "level", ["inf", "-Infinity", "1e999", "nan", float("inf"), float("nan")]
    )
    def test_non_finite_level_is_absent(self, level: Any) -> None:
        graph = decode_graph({"nodes": {"start": {"content": "x", "level": level}}})
        assert graph.nodes["start"].level is None

    def test_non_finite_delta_drops_effect(self) -> None:
        doc = parse_generator_output(
            '{"nodes": {"start": {"content": "x", "choices": ['
            '{"text": "a", "affinityEffect": {"characterId": "Mara", "delta": Infinity}},'
            '{"text": "b", "affinityEffect": {"characterId": "Mara", "delta": NaN}}]}}}'
        )
        choices = decode_graph(doc).nodes["start"].choices
        assert [c.effect for c in choices] == [None, None]


class TestDecodeEndings:
    def test_string_ending_becomes_description(self, messy_document: dict[str, Any]) -> None:
        graph = decode_graph(messy_document)
        assert graph.endings["bad"].description == "The light fails."
        assert graph.endings["bad"].category == "bad"

    def test_category_from_type_field(self, messy_document: dict[str, Any]) -> None:
        graph = decode_graph(messy_document)
        assert graph.endings["GOOD_END"].category == "good"

    def test_category_inferred_from_key(self, messy_document: dict[str, Any]) -> None:
        graph = decode_graph(messy_document)
        assert graph.endings["ending_neutral"].category == "neutral"

    @pytest.mark.parametrize(
        ("raw_type", "key", "expected"),
        [
            ("favorable", "", "good"),
            ("UNFAVORABLE", "", "bad"),
            (None, "unfavorable_end", "bad"),
            (None, "favourable", "good"),
            ("weird", "mystery", "neutral"),
        ],
    )
    def test_ending_type_for(self, raw_type: str | None, key: str, expected: str) -> None:
        assert ending_type_for(raw_type, key) == expected


class TestDecodeCast:
    def test_people_defaults(self) -> None:
        graph = decode_graph({"characters": {"x": {"id": "x"}}})
        person = graph.characters["x"]
        assert person.name == "Unknown"
        assert person.gender == "Unknown"
        assert person.age == 0

    def test_age_coerced_and_flag_read(self, messy_document: dict[str, Any]) -> None:
        graph = decode_graph(messy_document)
        assert graph.characters["c_mara"].age == 41
        assert graph.characters["c_lin"].is_primary is True
        assert graph.characters["c_mara"].is_primary is False

    def test_negative_age_is_zero(self) -> None:
        graph = decode_graph({"characters": {"x": {"id": "x", "age": -4}}})
        assert graph.characters["x"].age == 0

    def test_non_finite_age_is_zero(self) -> None:
        graph = decode_graph({"characters": {"x": {"id": "x", "age": "1e999"}}})
        assert graph.characters["x"].age == 0

    def test_description_backs_up_background(self) -> None:
        graph = decode_graph({"characters": {"x": {"id": "x", "description": "A sailor."}}})
        assert graph.characters["x"].background == "A sailor."

    def test_missing_id_gets_uuid(self) -> None:
        graph = decode_graph({"characters": {"x": {"name": "Mara"}}})
        assert len(graph.characters["x"].id) == 36

    def test_cast_as_list(self) -> None:
        graph = decode_graph(
            {"characters": [{"id": "c1", "name": "Lin"}, {"name": "Mara"}, {"role": "extra"}, "x"]}
        )
        assert set(graph.characters) == {"c1", "Mara", "char_2"}


class TestDecodeDocument:
    def test_title_and_meta(self, messy_document: dict[str, Any]) -> None:
        graph = decode_graph(messy_document)
        assert graph.title == "The Lighthouse"
        assert graph.meta.logline == "A keeper and a storm."
        assert graph.meta.target_runtime_minutes == 12

    def test_non_finite_runtime_is_zero(self) -> None:
        graph = decode_graph({"meta": {"targetRuntimeMinutes": "inf"}})
        assert graph.meta.target_runtime_minutes == 0

    def test_language_defaults(self) -> None:
        assert decode_graph({}).meta.language == "zh-CN"
        assert decode_graph({}, language="en").meta.language == "en"
        assert decode_graph({"meta": {"language": "fr"}}, language="en").meta.language == "fr"

    def test_empty_document(self) -> None:
        graph = decode_graph({})
        assert graph.title == "Untitled Project"
        assert graph.nodes == {}
        assert graph.endings == {}

    def test_wrong_section_shapes_are_ignored(self) -> None:
        graph = decode_graph({"nodes": ["a"], "endings": 3, "meta": "x"})
        assert graph.nodes == {}
        assert graph.endings == {}

    def test_non_mapping_is_rejected(self) -> None:
        with pytest.raises(DocumentDecodeError, match="expected a JSON object"):
            decode_graph(["not", "a", "graph"])  # type: ignore[arg-type]


class TestRawNodeUnion:
    def test_discriminator_resolves_each_kind(self) -> None:
        from branchwright.models.raw import RawDocument

        raw = RawDocument.model_validate({"nodes": {"a": {"content": "x"}, "b": "text", "c": None}})
        assert isinstance(raw.nodes["a"], RawNodeObject)
        assert isinstance(raw.nodes["b"], RawNodeText)
        assert isinstance(raw.nodes["c"], RawNodeEmpty)


class TestParseGeneratorOutput:
    def test_plain_json(self) -> None:
        assert parse_generator_output('{"title": "x"}') == {"title": "x"}

    def test_fenced_json(self) -> None:
        text = '```json\n{"title": "x"}\n```'
        assert parse_generator_output(text) == {"title": "x"}

    def test_bare_fence(self) -> None:
        assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_invalid_json(self) -> None:
        with pytest.raises(DocumentDecodeError):
            parse_generator_output("not json at all")

    def test_array_is_rejected(self) -> None:
        with pytest.raises(DocumentDecodeError, match="got list"):
            parse_generator_output("[1, 2]")
