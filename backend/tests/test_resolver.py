from __future__ import annotations

from datetime import datetime, timedelta, timezone

from branchchat.domain.resolver import resolve_path
from branchchat.domain.tree import MessageTree
from branchchat.storage.models import MessageRecord

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def record(message_id: str, parent_id: str, role: str, minute: int) -> MessageRecord:
    return MessageRecord(
        id=message_id,
        parent_id=parent_id,
        role=role,
        content=message_id,
        created_at=BASE_TIME + timedelta(minutes=minute),
    )


def branching_tree() -> MessageTree:
    #   u1 -> a1
    #      -> a2 -> u2 -> a3
    #   u1b (edited root)
    return MessageTree.from_records(
        [
            record("u1", "root", "user", 0),
            record("a1", "u1", "assistant", 1),
            record("a2", "u1", "assistant", 2),
            record("u2", "a2", "user", 3),
            record("a3", "u2", "assistant", 4),
            record("u1b", "root", "user", 5),
        ]
    )


def test_linear_conversation_has_no_branch_points():
    tree = MessageTree.from_records(
        [
            MessageRecord(id="m1", parent_id="root", role="user", content="hi"),
            MessageRecord(
                id="m2", parent_id="m1", role="assistant", content="hello", status="complete"
            ),
        ]
    )

    resolution = resolve_path(tree, {})
    assert [item.id for item in resolution.path] == ["m1", "m2"]
    assert resolution.branch_points == []
    assert resolution.leaf.id == "m2"


def test_empty_tree_resolves_to_empty_path():
    resolution = resolve_path(MessageTree())
    assert resolution.path == []
    assert resolution.branch_points == []
    assert resolution.leaf is None


def test_default_selection_follows_newest_child():
    resolution = resolve_path(branching_tree())

    assert [item.id for item in resolution.path] == ["u1b"]
    [point] = resolution.branch_points
    assert point.parent_id == "root"
    assert point.child_count == 2
    assert point.selected_index == 1


def test_explicit_selections_pick_older_branches():
    resolution = resolve_path(branching_tree(), {"root": 0, "u1": 0})

    assert [item.id for item in resolution.path] == ["u1", "a1"]
    assert [(p.parent_id, p.selected_index) for p in resolution.branch_points] == [
        ("root", 0),
        ("u1", 0),
    ]
    assert resolution.branch_points[1].branches == ("a1", "a2")


def test_out_of_range_selection_falls_back_for_that_parent_only():
    resolution = resolve_path(branching_tree(), {"root": 0, "u1": 7})

    assert [item.id for item in resolution.path] == ["u1", "a2", "u2", "a3"]
    assert resolution.branch_points[1].selected_index == 1


def test_negative_selection_falls_back_to_default():
    resolution = resolve_path(branching_tree(), {"root": -1})
    assert [item.id for item in resolution.path] == ["u1b"]


def test_non_integer_selections_fall_back_to_default():
    for selected in ("0", 0.0, None, True, [0]):
        resolution = resolve_path(branching_tree(), {"root": selected})
        assert [item.id for item in resolution.path] == ["u1b"]
        assert resolution.branch_points[0].selected_index == 1


def test_selection_on_single_child_parent_is_honoured():
    resolution = resolve_path(branching_tree(), {"root": 0, "u1": 1, "a2": 0})

    assert [item.id for item in resolution.path] == ["u1", "a2", "u2", "a3"]
    assert all(point.child_count > 1 for point in resolution.branch_points)


def test_plain_record_list_orders_siblings_by_creation_time():
    records = list(branching_tree().messages())
    records.reverse()

    resolution = resolve_path(records, {"root": 0})
    assert [item.id for item in resolution.path] == ["u1", "a2", "u2", "a3"]


def test_plain_record_list_skips_deleted_messages():
    records = list(branching_tree().messages())
    records.append(record("u1b", "root", "user", 5).model_copy(update={"deleted": True}))

    resolution = resolve_path(records)
    assert [item.id for item in resolution.path] == ["u1", "a2", "u2", "a3"]
    assert [point.parent_id for point in resolution.branch_points] == ["u1"]
