from __future__ import annotations

import json

from persistence import keys as K
from persistence.recovery import (
    balance_delimiters,
    create_backup,
    drop_trailing_commas,
    list_backups,
    load_with_recovery,
    parse_with_recovery,
    quote_bare_keys,
    strip_bom,
)


def test_strict_parse_is_not_marked_recovered():
    result = parse_with_recovery('{"a": 1}')
    assert result.success and result.data == {"a": 1}
    assert result.recovered is False
    assert result.strategy == "strict"


def test_missing_closing_brace_and_bracket_are_repaired():
    obj = parse_with_recovery('{"title": "Resume", "sections": [{"id": "s1"}')
    assert obj.success is True
    assert obj.data == {"title": "Resume", "sections": [{"id": "s1"}]}
    assert obj.recovered is True

    arr = parse_with_recovery('[1, 2, {"x": [3')
    assert arr.success is True
    assert arr.data == [1, 2, {"x": [3]}]


def test_braces_inside_strings_do_not_confuse_balancing():
    result = parse_with_recovery('{"summary": "uses { and [ freely"')
    assert result.success is True
    assert result.data == {"summary": "uses { and [ freely"}


def test_individual_repair_steps():
    assert strip_bom("\ufeff" + '{"a":1}') == '{"a":1}'
    assert drop_trailing_commas('{"a": [1, 2,], "b": "x,]"}') == '{"a": [1, 2], "b": "x,]"}'
    assert quote_bare_keys('{a: 1, "b": "c: d"}') == '{"a": 1, "b": "c: d"}'
    assert balance_delimiters('{"a": "unterminated') == '{"a": "unterminated"}'


def test_extraction_of_embedded_object():
    result = parse_with_recovery('garbage before {"ok": true} and after')
    assert result.success is True
    assert result.data == {"ok": True}
    assert result.strategy in ("repaired", "extracted")


def test_total_failure_reports_original_error():
    result = parse_with_recovery("definitely not json")
    assert result.success is False
    assert result.error

    empty = parse_with_recovery("")
    assert empty.success is False
    assert empty.error == "Empty or null JSON string"


def test_backups_keep_three_most_recent(store):
    for stamp in range(1, 6):
        create_backup(store, K.CURRENT_DOCUMENT_KEY, f"raw-{stamp}", now_ms=stamp)

    backups = list_backups(store, K.CURRENT_DOCUMENT_KEY)
    assert len(backups) == 3
    assert [store.get(k) for k in backups] == ["raw-5", "raw-4", "raw-3"]


def test_load_with_recovery_rewrites_and_backs_up(store):
    store.set(K.CURRENT_DOCUMENT_KEY, '{"id": "d1", "title": "T"')

    result = load_with_recovery(store, K.CURRENT_DOCUMENT_KEY)

    assert result.success and result.data == {"id": "d1", "title": "T"}
    assert json.loads(store.get(K.CURRENT_DOCUMENT_KEY) or "") == {"id": "d1", "title": "T"}
    backups = list_backups(store, K.CURRENT_DOCUMENT_KEY)
    assert [store.get(k) for k in backups] == ['{"id": "d1", "title": "T"']


def test_load_with_recovery_falls_back_to_latest_good_backup(store):
    create_backup(store, K.CURRENT_DOCUMENT_KEY, '{"id": "old"}', now_ms=1)
    store.set(K.CURRENT_DOCUMENT_KEY, "%%%")

    result = load_with_recovery(store, K.CURRENT_DOCUMENT_KEY)

    assert result.success is True
    assert result.strategy == "backup"
    assert result.data == {"id": "old"}
    # The unreadable value is kept as a backup rather than thrown away.
    assert "%%%" in [store.get(k) for k in list_backups(store, K.CURRENT_DOCUMENT_KEY)]


def test_load_with_recovery_missing_key(store):
    result = load_with_recovery(store, "nope")
    assert result.success is False
    assert result.error == "missing"
