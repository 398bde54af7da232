"""Tests for the Event Processor, store and activity tracking."""

from datetime import datetime, timedelta, timezone

import pytest

from casestream.activity.tracker import ActivityTracker
from casestream.models.events import CloudEvent
from casestream.models.resources import CaseStatus, ResourceKind
from casestream.patch.merge import merge_patches
from casestream.processor.classify import CreateResource, ResetRequested
from casestream.processor.events import EventProcessor, ProcessOutcome, apply_action
from casestream.store.state import EngineState

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _case_event(event_type: str, case_id: str, n: int, **data) -> CloudEvent:
    return CloudEvent(
        id=f"e{n}",
        source="server",
        subject=case_id,
        type=event_type,
        time=T0 + timedelta(minutes=n),
        data={"item_type": "issue", "item_id": case_id, **data},
    )


def created(case_id: str, n: int, item_data: dict) -> CloudEvent:
    return _case_event("item.created", case_id, n, item_data=item_data)


def updated(case_id: str, n: int, patch: dict) -> CloudEvent:
    return _case_event("item.updated", case_id, n, patch=patch)


def deleted(case_id: str, n: int) -> CloudEvent:
    return _case_event("item.deleted", case_id, n)


@pytest.fixture
def state():
    return EngineState()


@pytest.fixture
def processor(state):
    return EventProcessor(state)


class TestCaseLifecycle:
    def test_create_update_delete(self, state, processor):
        """Parkeervergunning case goes through its full lifecycle."""
        processor.process(created("c1", 1, {"title": "Parkeervergunning", "status": "open"}))
        assert state.store.get_case("c1").status == CaseStatus.OPEN

        processor.process(updated("c1", 2, {"status": "in_progress"}))
        case = state.store.get_case("c1")
        assert case.status == CaseStatus.IN_PROGRESS
        assert case.title == "Parkeervergunning"

        processor.process(deleted("c1", 3))
        assert "c1" not in state.store
        assert state.store.get_case("c1") is None

    def test_update_without_creation_synthesizes_case(self, state, processor):
        processor.process(updated("c2", 1, {"status": "closed"}))
        assert state.store.get("c2") == {"id": "c2", "status": "closed"}

    def test_delete_of_absent_case_is_noop(self, state, processor):
        result = processor.process(deleted("c9", 1))
        assert result.outcome == ProcessOutcome.APPLIED
        assert len(state.store) == 0

    def test_deletion_wins_over_earlier_updates(self, state, processor):
        processor.process(created("c1", 1, {"title": "A"}))
        processor.process(updated("c1", 2, {"title": "B"}))
        processor.process(deleted("c1", 3))
        assert "c1" not in state.store

    def test_update_after_deletion_recreates(self, state, processor):
        processor.process(created("c1", 1, {"title": "A"}))
        processor.process(deleted("c1", 2))
        processor.process(updated("c1", 3, {"title": "B"}))
        assert state.store.get("c1") == {"id": "c1", "title": "B"}

    def test_creation_replaces_existing_value(self, state, processor):
        processor.process(created("c1", 1, {"title": "A", "priority": "high"}))
        processor.process(created("c1", 2, {"title": "B"}))
        assert state.store.get("c1") == {"id": "c1", "title": "B"}

    def test_json_commit_case(self, state, processor):
        processor.process(CloudEvent(
            id="e1",
            source="server",
            subject="c1",
            type="json.commit",
            data={
                "schema": "http://localhost:8000/schemas/Issue",
                "resource_id": "c1",
                "resource_data": {"title": "Bouwvergunning"},
            },
        ))
        processor.process(CloudEvent(
            id="e2",
            source="server",
            subject="c1",
            type="json.commit",
            data={
                "schema": "http://localhost:8000/schemas/Issue",
                "resource_id": "c1",
                "patch": {"_deleted": True},
            },
        ))
        assert "c1" not in state.store

    def test_store_reads_are_copies(self, state, processor):
        processor.process(created("c1", 1, {"tags": ["a"]}))
        value = state.store.get("c1")
        value["tags"].append("b")
        assert state.store.get("c1")["tags"] == ["a"]


class TestFoldEquivalence:
    def test_stored_value_is_fold_of_patches(self, state, processor):
        initial = {"title": "Parkeervergunning", "status": "open", "meta": {"a": 1}}
        patches = [
            {"status": "in_progress"},
            {"meta": {"b": 2}},
            {"assignee": "alice@gemeente.nl"},
            {"meta": {"a": None}},
        ]
        processor.process(created("c1", 0, initial))
        for n, patch in enumerate(patches, start=1):
            processor.process(updated("c1", n, patch))

        assert state.store.get("c1") == merge_patches({"id": "c1", **initial}, patches)


class TestSecondaryKinds:
    def test_tasks_do_not_enter_store(self, state, processor):
        event = CloudEvent(
            id="e1",
            source="server",
            subject="c1",
            type="item.created",
            time=T0,
            data={"item_type": "task", "item_id": "t1", "item_data": {"cta": "Upload"}},
        )
        result = processor.process(event)
        assert result.outcome == ProcessOutcome.APPLIED
        assert "t1" not in state.store
        assert state.activity.last_activity("c1") == T0


class TestControlAndUnknownEvents:
    def test_reset_mutates_nothing(self, state, processor):
        processor.process(created("c1", 1, {"title": "A"}))
        result = processor.process(
            CloudEvent(id="r1", source="server", subject="c1", type="system.reset",
                       time=T0 + timedelta(hours=1))
        )
        assert result.outcome == ProcessOutcome.RESET
        assert "c1" in state.store
        assert state.activity.last_activity("c1") == T0 + timedelta(minutes=1)

    def test_unknown_event_refreshes_known_subject(self, state, processor):
        processor.process(created("c1", 1, {"title": "A"}))
        later = T0 + timedelta(hours=2)
        result = processor.process(
            CloudEvent(id="x1", source="server", subject="c1", type="case.viewed", time=later)
        )
        assert result.outcome == ProcessOutcome.IGNORED
        assert state.activity.last_activity("c1") == later
        assert state.store.get("c1") == {"id": "c1", "title": "A"}

    def test_unknown_event_for_unknown_subject_is_ignored(self, state, processor):
        processor.process(
            CloudEvent(id="x1", source="server", subject="c7", type="case.viewed", time=T0)
        )
        assert "c7" not in state.activity

    def test_missing_time_uses_arrival_time(self, state, processor):
        arrival = T0 + timedelta(days=1)
        event = created("c1", 1, {"title": "A"})
        event.time = None
        processor.process(event, received_at=arrival)
        assert state.activity.last_activity("c1") == arrival


class TestActivity:
    def test_last_activity_never_regresses(self, state, processor):
        processor.process(created("c1", 5, {"title": "A"}))
        processor.process(updated("c1", 2, {"title": "B"}))
        assert state.activity.last_activity("c1") == T0 + timedelta(minutes=5)
        # Value still follows arrival order
        assert state.store.get("c1")["title"] == "B"

    def test_touch_reports_movement(self):
        tracker = ActivityTracker()
        assert tracker.touch("c1", T0)
        assert not tracker.touch("c1", T0)
        assert not tracker.touch("c1", T0 - timedelta(seconds=1))
        assert tracker.touch("c1", T0 + timedelta(seconds=1))

    def test_ranking(self, state, processor):
        processor.process(created("c1", 1, {}))
        processor.process(created("c2", 3, {}))
        processor.process(created("c3", 2, {}))
        processor.process(updated("c1", 4, {"title": "A"}))
        assert [subject for subject, _ in state.activity.ranking()] == ["c1", "c2", "c3"]


class TestApplyAction:
    def test_rejects_non_resource_actions(self):
        with pytest.raises(TypeError):
            apply_action({}, ResetRequested())

    def test_create_copies_data(self):
        resources = {}
        data = {"id": "t1"}
        apply_action(resources, CreateResource(kind=ResourceKind.TASK, resource_id="t1", data=data))
        resources["t1"]["x"] = 1
        assert data == {"id": "t1"}
