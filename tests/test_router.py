"""Tests for HumanReplyRouter — routing unsolicited human messages."""

from __future__ import annotations

from collections import deque
from datetime import timedelta

from conftest import FakeStore, FakeVersionControl, ScriptedDecisionMaker, make_state
from dispatch.core.router import HumanReplyRouter
from dispatch.core.scheduler import CycleScheduler
from dispatch.core.state import ProjectStatus, utcnow


class TriggerCountingScheduler(CycleScheduler):
    triggers = 0

    def trigger(self) -> None:
        self.triggers += 1


def _scheduler(store, channel, settings):
    return TriggerCountingScheduler(store, None, ScriptedDecisionMaker(), FakeVersionControl(), channel, settings)


def _ago(minutes: int):
    return utcnow() - timedelta(minutes=minutes)


class TestRouting:
    def test_resumes_most_recent_waiting_project(self, channel, settings):
        store = FakeStore(
            make_state(project_id="old", status=ProjectStatus.WAITING_INPUT, last_activity=_ago(60)),
            make_state(project_id="new", name="New", status=ProjectStatus.WAITING_INPUT, last_activity=_ago(5)),
            make_state(project_id="busy", status=ProjectStatus.ACTIVE, last_activity=_ago(1)),
        )
        scheduler = _scheduler(store, channel, settings)

        ack = HumanReplyRouter(store, scheduler).route("  Use SQLite  ")

        resumed = store.load("new")
        assert resumed.status == ProjectStatus.ACTIVE
        assert resumed.pending_direction == "Use SQLite"
        assert store.load("old").status == ProjectStatus.WAITING_INPUT
        assert store.load("busy").pending_direction is None
        assert scheduler.triggers == 1
        assert "New" in ack

    def test_attaches_direction_to_most_recent_active_project(self, channel, settings):
        store = FakeStore(
            make_state(project_id="a", status=ProjectStatus.ACTIVE, last_activity=_ago(30)),
            make_state(project_id="b", status=ProjectStatus.ACTIVE, last_activity=_ago(2)),
        )
        scheduler = _scheduler(store, channel, settings)

        HumanReplyRouter(store, scheduler).route("Prioritise the export")

        assert store.load("b").pending_direction == "Prioritise the export"
        assert store.load("b").status == ProjectStatus.ACTIVE
        assert store.load("a").pending_direction is None
        assert scheduler.triggers == 1

    def test_queues_onboarding_when_nothing_is_running(self, channel, settings):
        store = FakeStore(make_state(status=ProjectStatus.PAUSED))
        scheduler = _scheduler(store, channel, settings)

        HumanReplyRouter(store, scheduler).route("Build a recipe app")

        assert scheduler._onboarding_requests == deque(["Build a recipe app"])
        assert scheduler.triggers == 1
        assert store.saves == []

