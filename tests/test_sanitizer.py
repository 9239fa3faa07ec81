import pytest

from data_alchemist.exceptions import ExternalPayloadError
from data_alchemist.sanitizer import (
    FixContext,
    ModificationPatch,
    ModifyContext,
    apply_patch,
    infer_entity_type,
    reconcile_external_patch,
)

PAYLOAD = '{"updatedData":[{"TaskID":"T1","Duration":3}],"entityType":"tasks","changesMade":"x"}'


def test_fenced_payload_is_returned_unchanged():
    raw = f"Here you go:\n```json\n{PAYLOAD}\n```\nLet me know!"

    patch = reconcile_external_patch(raw, ModifyContext())

    assert patch.to_dict() == {
        "updatedData": [{"TaskID": "T1", "Duration": 3}],
        "entityType": "tasks",
        "changesMade": "x",
    }


def test_plain_payload_without_context():
    assert reconcile_external_patch(PAYLOAD).entity_type == "tasks"


@pytest.mark.parametrize("raw, message", [
    ("not json at all", "No JSON object found"),
    ("{not: valid}", "Invalid JSON"),
    ('{"entityType":"tasks"}', "Missing or invalid updatedData array"),
    ('{"updatedData":{},"entityType":"tasks"}', "Missing or invalid updatedData array"),
    ('{"updatedData":[],"entityType":"projects"}', "Invalid entityType"),
    ('{"updatedData":[{"TaskID":"T1"},{"Duration":2}],"entityType":"tasks"}', "Missing TaskID"),
    ('{"updatedData":[{"ClientID":"C1"}],"entityType":"tasks"}', "Missing TaskID"),
])
def test_modify_mode_raises(raw, message):
    with pytest.raises(ExternalPayloadError, match=message):
        reconcile_external_patch(raw, ModifyContext("make it better"))


def test_fix_mode_falls_back_for_priority():
    patch = reconcile_external_patch(
        "I cannot do that",
        FixContext("CL001", "PriorityLevel must be between 1-5"),
    )

    assert patch.updated_data == [{"ClientID": "CL001", "PriorityLevel": 3}]
    assert patch.entity_type == "clients"
    assert patch.changes_made == "Applied default fix for PriorityLevel must be between 1-5"


@pytest.mark.parametrize("entity_id, error, expected", [
    ("T5", "Duration must be at least 1", {"TaskID": "T5", "Duration": 1}),
    ("W2", "MaxLoadPerPhase must be at least 1", {"WorkerID": "W2", "MaxLoadPerPhase": 1}),
    ("T5", "No worker has required skill: rust", {"TaskID": "T5"}),
])
def test_fix_mode_fallback_values(entity_id, error, expected):
    patch = reconcile_external_patch(None, FixContext(entity_id, error))

    assert patch.updated_data == [expected]


def test_fix_mode_rejects_partially_valid_payload_atomically():
    raw = '{"updatedData":[{"TaskID":"T1","Duration":4},{"Duration":2}],"entityType":"tasks"}'

    patch = reconcile_external_patch(raw, FixContext("T1", "Duration must be at least 1"))

    assert patch.updated_data == [{"TaskID": "T1", "Duration": 1}]


def test_fix_mode_uses_valid_payload():
    patch = reconcile_external_patch(PAYLOAD, FixContext("T1", "Duration must be at least 1"))

    assert patch.updated_data == [{"TaskID": "T1", "Duration": 3}]


def test_explicit_entity_type_wins_over_prefix():
    patch = reconcile_external_patch("", FixContext("TOM", "MaxLoadPerPhase must be at least 1", "workers"))

    assert patch.updated_data == [{"WorkerID": "TOM", "MaxLoadPerPhase": 1}]


def test_infer_entity_type():
    assert infer_entity_type("W1") == "workers"
    assert infer_entity_type("T1") == "tasks"
    assert infer_entity_type("CL001") == "clients"


def test_apply_patch_merges_changed_fields_only(tasks):
    patch = ModificationPatch([{"TaskID": "T2", "Duration": 5}, {"TaskID": "T9", "Duration": 1}], "tasks")

    merged, unmatched = apply_patch(tasks, patch)

    assert merged[1] == {**tasks[1], "Duration": 5}
    assert merged[0] == tasks[0]
    assert tasks[1]["Duration"] == 1
    assert unmatched == ["T9"]


def test_fix_mode_falls_back_on_deeply_nested_payload():
    raw = '{"updatedData": ' + "[" * 100000 + "]" * 100000 + "}"

    patch = reconcile_external_patch(raw, FixContext("CL001", "PriorityLevel must be between 1-5"))

    assert patch.updated_data == [{"ClientID": "CL001", "PriorityLevel": 3}]


def test_modify_mode_reports_deeply_nested_payload():
    raw = '{"updatedData": ' + "[" * 100000 + "]" * 100000 + "}"

    with pytest.raises(ExternalPayloadError, match="Invalid JSON"):
        reconcile_external_patch(raw, ModifyContext("flatten"))
