"""Tests for deep/smart merging of upstream payloads."""

from blockflow.workflow.merge import deep_merge, fold_merge, merge_by_id, smart_merge


class TestDeepMerge:
    def test_disjoint_keys_are_combined(self):
        assert deep_merge({"a": 1}, {"b": 2}) == {"a": 1, "b": 2}

    def test_nested_dicts_merge_recursively(self):
        target = {"profile": {"name": "Ann", "city": "Paris"}}
        source = {"profile": {"city": "Lyon", "zip": "69000"}}
        assert deep_merge(target, source) == {"profile": {"name": "Ann", "city": "Lyon", "zip": "69000"}}

    def test_scalar_conflict_source_wins(self):
        assert deep_merge({"a": 1}, {"a": 2}) == {"a": 2}

    def test_none_source_value_keeps_target(self):
        assert deep_merge({"a": 1}, {"a": None}) == {"a": 1}
        assert deep_merge({"a": 1}, None) == {"a": 1}

    def test_plain_lists_concatenate(self):
        assert deep_merge([1, 2], [3]) == [1, 2, 3]

    def test_type_mismatch_source_wins(self):
        assert deep_merge({"a": 1}, [1]) == [1]
        assert deep_merge("text", {"a": 1}) == {"a": 1}

    def test_inputs_are_not_mutated(self):
        target = {"a": {"b": 1}}
        source = {"a": {"c": 2}}
        deep_merge(target, source)
        assert target == {"a": {"b": 1}}
        assert source == {"a": {"c": 2}}


class TestMergeById:
    def test_shared_ids_merge_and_new_ids_append(self):
        target = [{"id": 1, "name": "Ann"}, {"id": 2, "name": "Bob"}]
        source = [{"id": 2, "email": "bob@example.com"}, {"id": 3, "name": "Cid"}]
        assert merge_by_id(target, source) == [
            {"id": 1, "name": "Ann"},
            {"id": 2, "name": "Bob", "email": "bob@example.com"},
            {"id": 3, "name": "Cid"},
        ]

    def test_records_without_id_are_appended(self):
        assert merge_by_id([{"id": 1}], [{"name": "anon"}]) == [{"id": 1}, {"name": "anon"}]

    def test_deep_merge_uses_id_for_record_lists(self):
        target = [{"id": "a", "x": 1}]
        source = [{"id": "a", "y": 2}]
        assert deep_merge(target, source) == [{"id": "a", "x": 1, "y": 2}]


class TestSmartMerge:
    def test_records_merged_by_identity(self):
        target = {"records": [{"id": 1, "name": "Ann"}], "source": "crm"}
        source = {"records": [{"id": 1, "score": 90}, {"id": 2, "score": 40}], "enriched": True}
        assert smart_merge(target, source) == {
            "records": [{"id": 1, "name": "Ann", "score": 90}, {"id": 2, "score": 40}],
            "source": "crm",
            "enriched": True,
        }

    def test_scalar_conflict_later_producer_wins(self):
        assert smart_merge({"status": "draft", "a": 1}, {"status": "final"}) == {"status": "final", "a": 1}

    def test_every_collection_key_is_identity_aware(self):
        for key in ("records", "items", "rows", "contacts"):
            merged = smart_merge({key: [{"id": 1, "a": 1}]}, {key: [{"id": 1, "b": 2}]})
            assert merged == {key: [{"id": 1, "a": 1, "b": 2}]}

    def test_collection_without_ids_concatenates(self):
        assert smart_merge({"items": [1]}, {"items": [2]}) == {"items": [1, 2]}

    def test_non_dict_payloads_fall_back_to_deep_merge(self):
        assert smart_merge([1], [2]) == [1, 2]
        assert smart_merge({"a": 1}, None) == {"a": 1}


class TestFoldMerge:
    def test_empty_fold_is_empty_dict(self):
        assert fold_merge([]) == {}

    def test_single_payload_unchanged(self):
        assert fold_merge([{"a": 1}]) == {"a": 1}

    def test_left_fold_in_declaration_order(self):
        payloads = [{"v": 1, "a": True}, {"v": 2, "b": True}, {"v": 3, "c": True}]
        assert fold_merge(payloads) == {"v": 3, "a": True, "b": True, "c": True}
