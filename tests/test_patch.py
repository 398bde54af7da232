"""Tests for JSON Merge Patch."""

from casestream.patch.merge import apply_patch, merge_patches


class TestApplyPatch:
    def test_empty_patch_is_identity(self):
        target = {"a": 1, "b": {"c": [1, 2]}, "d": None}
        assert apply_patch(target, {}) == target

    def test_null_removes_key(self):
        assert apply_patch({"a": 1, "b": 2}, {"a": None}) == {"b": 2}

    def test_null_for_missing_key_is_noop(self):
        assert apply_patch({"b": 2}, {"a": None}) == {"b": 2}

    def test_recursive_merge_keeps_siblings(self):
        assert apply_patch({"a": {"x": 1}}, {"a": {"y": 2}}) == {"a": {"x": 1, "y": 2}}

    def test_nested_null_removes_nested_key(self):
        result = apply_patch({"a": {"x": 1, "y": 2}}, {"a": {"x": None}})
        assert result == {"a": {"y": 2}}

    def test_object_patch_over_scalar_replaces_it(self):
        assert apply_patch({"a": 5}, {"a": {"b": 1}}) == {"a": {"b": 1}}

    def test_arrays_are_replaced_not_merged(self):
        assert apply_patch({"tags": [1, 2, 3]}, {"tags": [4]}) == {"tags": [4]}

    def test_non_object_patch_replaces_target(self):
        assert apply_patch({"a": 1}, "hello") == "hello"
        assert apply_patch({"a": 1}, [1, 2]) == [1, 2]

    def test_non_object_target_is_treated_as_empty(self):
        assert apply_patch("hello", {"a": 1}) == {"a": 1}
        assert apply_patch(None, {"a": {"b": None}}) == {"a": {}}

    def test_inputs_are_not_mutated(self):
        target = {"a": {"x": 1}, "list": [1]}
        patch = {"a": {"y": {"z": 1}}, "list": None}
        result = apply_patch(target, patch)

        assert target == {"a": {"x": 1}, "list": [1]}
        assert patch == {"a": {"y": {"z": 1}}, "list": None}

        result["a"]["y"]["z"] = 99
        assert patch["a"]["y"]["z"] == 1

    def test_result_shares_no_state_with_target(self):
        target = {"a": {"x": [1]}}
        result = apply_patch(target, {"b": 2})
        result["a"]["x"].append(2)
        assert target["a"]["x"] == [1]


class TestMergePatches:
    def test_folds_in_order(self):
        result = merge_patches(
            {"title": "Parkeervergunning", "status": "open"},
            [{"status": "in_progress"}, {"assignee": "alice"}, {"status": "closed"}],
        )
        assert result == {
            "title": "Parkeervergunning",
            "status": "closed",
            "assignee": "alice",
        }

    def test_no_patches_returns_copy(self):
        target = {"a": {"b": 1}}
        result = merge_patches(target, [])
        assert result == target
        assert result is not target
        assert result["a"] is not target["a"]
