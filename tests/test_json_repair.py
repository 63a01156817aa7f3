from __future__ import annotations

import pytest

from generation.json_repair import (
    balanced_json_slice,
    extract_json_text,
    parse_json_content,
    remove_unmatched_closers,
    repair_truncated_json,
    strip_dangling_json_tail,
)
from utils.exceptions import CompletionParseError


def test_plain_and_fenced_objects() -> None:
    assert parse_json_content('{"a": 1}') == {"a": 1}
    assert parse_json_content('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}
    assert parse_json_content('Aqui esta o JSON: {"ok": true} espero que ajude') == {"ok": True}


def test_smart_quotes_and_raw_newlines() -> None:
    assert parse_json_content("{“titulo”: “Erro comum”}") == {"titulo": "Erro comum"}
    assert parse_json_content('{"caption": "linha 1\nlinha 2"}') == {"caption": "linha 1\nlinha 2"}


def test_trailing_commas_and_extra_closers() -> None:
    assert parse_json_content('{"a": [1, 2,],}') == {"a": [1, 2]}
    assert parse_json_content('{"a": 1}}') == {"a": 1}
    assert remove_unmatched_closers('{"a": [1]]}') == '{"a": [1]}'


def test_truncated_reply_is_closed() -> None:
    truncated = '{"clips": [{"title": "Erro", "caption": "texto cort'

    assert parse_json_content(truncated) == {"clips": [{"title": "Erro"}]}


def test_repair_helpers() -> None:
    assert strip_dangling_json_tail('{"a": 1, "b":') == '{"a": 1'
    assert repair_truncated_json('{"a": [1, {"b": "x') == '{"a": [1, {"b": "x"}]}'
    assert repair_truncated_json("sem objeto") is None
    assert balanced_json_slice('lixo {"a": {"b": 1}} mais {"c": 2}') == '{"a": {"b": 1}}'
    assert extract_json_text("antes {x} depois") == "{x}"


def test_unrecoverable_text_raises() -> None:
    with pytest.raises(CompletionParseError, match="^Invalid JSON output"):
        parse_json_content("nenhum json aqui")


def test_array_root_is_rejected() -> None:
    with pytest.raises(CompletionParseError):
        parse_json_content("[1, 2, 3]")
