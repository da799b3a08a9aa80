"""
Tests for the triage batch-apply workflow.
"""
import asyncio

import pytest

from conftest import FakeGateway, make_move
from moveboard.board import Board
from moveboard.errors import NetworkError, NotFound, TriageUnavailable
from moveboard.events import EventBus, RETRY, TOAST
from moveboard.schema import (
    AutoAction, Lane, RewriteCandidate, TriageResult, PROMOTE, FILL_FIELD,
)
from moveboard.triage import TriageWorkflow, categorize_actions


def sample_result(run_id="run-1"):
    return TriageResult(
        run_id=run_id,
        date="2026-03-02",
        timestamp="2026-03-02T09:00:00+00:00",
        auto_actions=[
            AutoAction(PROMOTE, 3, "Call vendor", "Acme", from_lane="queued", to_lane="active"),
            AutoAction(PROMOTE, 4, "Draft brief", "Beta", from_lane="backlog", to_lane="queued"),
            AutoAction(FILL_FIELD, 6, "Send invoice", "Acme", field="effort_estimate", value=2),
        ],
        rewrite_candidates=[
            RewriteCandidate(5, "stuff", "Acme", "Send Q3 report to Acme"),
            RewriteCandidate(7, "misc", "Beta", "Book Beta kickoff call"),
            RewriteCandidate(9, "todo", "Acme", "Review Acme contract"),
        ],
    )


def sample_moves():
    return [
        make_move(5, "stuff", Lane.ACTIVE, 0),
        make_move(7, "misc", Lane.QUEUED, 0),
        make_move(9, "todo", Lane.BACKLOG, 0),
    ]


def make_workflow(result=None, with_board=True):
    gateway = FakeGateway(sample_moves(), triage=result or sample_result())
    bus = EventBus()
    notes = []
    bus.subscribe("notification", lambda notification: notes.append(notification))
    board = Board(gateway, bus) if with_board else None
    workflow = TriageWorkflow(gateway, board=board, bus=bus)
    asyncio.run(workflow.on_refresh_triage())
    gateway.calls.clear()
    return workflow, gateway, notes


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Refresh
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_refresh_loads_result_and_refreshes_board():
    gateway = FakeGateway(sample_moves(), triage=sample_result())
    board = Board(gateway)
    workflow = TriageWorkflow(gateway, board=board)

    assert asyncio.run(workflow.on_refresh_triage()) is True
    assert workflow.result.run_id == "run-1"
    assert workflow.is_fetching is False
    assert gateway.calls == [("run_triage",), ("list_moves",)]
    assert len(board.items) == 3


def test_categorized_actions():
    workflow, _, _ = make_workflow()
    grouped = workflow.categorized_actions()
    assert [a.move_id for a in grouped[PROMOTE]] == [3, 4]
    assert [a.move_id for a in grouped[FILL_FIELD]] == [6]


def test_categorize_actions_empty():
    assert categorize_actions([]) == {PROMOTE: [], FILL_FIELD: []}


def test_refresh_resets_selection_and_applied():
    workflow, gateway, _ = make_workflow()
    workflow.on_toggle_rewrite(5)
    asyncio.run(workflow.on_apply_selected())
    workflow.on_toggle_rewrite(9)
    assert workflow.applied == {5}

    gateway.triage = sample_result("run-2")
    asyncio.run(workflow.on_refresh_triage())

    assert workflow.result.run_id == "run-2"
    assert workflow.selection == set()
    assert workflow.applied == set()
    assert len(workflow.visible_candidates()) == 3


def test_refresh_unavailable_surfaces_retry():
    workflow, gateway, notes = make_workflow()
    gateway.triage_error = TriageUnavailable("triage service down")

    assert asyncio.run(workflow.on_refresh_triage()) is False
    assert workflow.result is None
    assert workflow.is_fetching is False
    assert isinstance(workflow.last_error, TriageUnavailable)
    assert notes[-1].kind == RETRY
    assert ("list_moves",) not in gateway.calls


def test_stale_triage_run_is_ignored():
    workflow, gateway, _ = make_workflow(with_board=False)
    results = iter([sample_result("slow"), sample_result("fast")])

    async def scenario():
        gate = asyncio.Event()

        async def run_triage():
            result = next(results)
            if result.run_id == "slow":
                await gate.wait()
            return result

        gateway.run_triage = run_triage
        first = asyncio.create_task(workflow.on_refresh_triage())
        await asyncio.sleep(0)
        second = await workflow.on_refresh_triage()
        gate.set()
        return second, await first

    second, first = asyncio.run(scenario())
    assert second is True
    assert first is False
    assert workflow.result.run_id == "fast"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Toggle / apply
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_toggle_flips_membership():
    workflow, _, _ = make_workflow()
    assert workflow.on_toggle_rewrite(5) == {5}
    assert workflow.on_toggle_rewrite(7) == {5, 7}
    assert workflow.on_toggle_rewrite(5) == {7}


def test_apply_selected_scenario():
    """Select two of three candidates; exactly two patches, one left visible."""
    workflow, gateway, notes = make_workflow()
    workflow.on_toggle_rewrite(5)
    workflow.on_toggle_rewrite(7)

    outcome = asyncio.run(workflow.on_apply_selected())

    patches = gateway.patches()
    assert len(patches) == 2
    assert ("patch_move", 5, {"title": "Send Q3 report to Acme"}) in patches
    assert ("patch_move", 7, {"title": "Book Beta kickoff call"}) in patches
    assert sorted(outcome.succeeded) == [5, 7]
    assert outcome.failed == {}
    assert workflow.selection == set()
    assert workflow.applied == {5, 7}
    assert [c.move_id for c in workflow.visible_candidates()] == [9]
    assert notes[-1].level == "info"
    assert gateway.calls[-1] == ("list_moves",)
    assert workflow.board.get(5).title == "Send Q3 report to Acme"


def test_apply_with_empty_selection_sends_nothing():
    workflow, gateway, _ = make_workflow()
    outcome = asyncio.run(workflow.on_apply_selected())
    assert outcome.requested == 0
    assert gateway.calls == []


def test_apply_ignores_already_applied_ids():
    workflow, gateway, _ = make_workflow()
    workflow.on_toggle_rewrite(5)
    asyncio.run(workflow.on_apply_selected())
    workflow.selection.add(5)
    gateway.calls.clear()

    asyncio.run(workflow.on_apply_selected())
    assert gateway.patches() == []


def test_partial_failure_keeps_failed_selected():
    workflow, gateway, notes = make_workflow()
    gateway.failures[("patch_move", 7)] = NetworkError("connection reset")
    for move_id in (5, 7, 9):
        workflow.on_toggle_rewrite(move_id)

    outcome = asyncio.run(workflow.on_apply_selected())

    assert len(gateway.patches()) == 3
    assert sorted(outcome.succeeded) == [5, 9]
    assert set(outcome.failed) == {7}
    assert workflow.applied == {5, 9}
    assert workflow.selection == {7}
    assert [c.move_id for c in workflow.visible_candidates()] == [7]
    assert notes[-1].kind == TOAST
    assert notes[-1].level == "error"


def test_every_failure_is_reported():
    workflow, gateway, notes = make_workflow()
    gateway.failures[("patch_move", 5)] = NotFound(5)
    gateway.failures[("patch_move", 7)] = NetworkError("timeout")
    workflow.on_toggle_rewrite(5)
    workflow.on_toggle_rewrite(7)
    before = len(notes)

    outcome = asyncio.run(workflow.on_apply_selected())

    assert outcome.succeeded == ()
    assert len(notes) - before == 2
    assert workflow.applied == set()
    assert workflow.selection == {5, 7}


def test_apply_then_retry_failed():
    workflow, gateway, _ = make_workflow()
    gateway.failures[("patch_move", 7)] = NetworkError("timeout")
    workflow.on_toggle_rewrite(5)
    workflow.on_toggle_rewrite(7)
    asyncio.run(workflow.on_apply_selected())
    gateway.calls.clear()

    outcome = asyncio.run(workflow.on_apply_selected())
    assert gateway.patches() == [("patch_move", 7, {"title": "Book Beta kickoff call"})]
    assert outcome.succeeded == (7,)
    assert workflow.applied == {5, 7}
    assert workflow.visible_candidates() == []


def test_unexpected_exception_propagates_after_bookkeeping():
    workflow, gateway, _ = make_workflow()
    gateway.failures[("patch_move", 7)] = RuntimeError("bug")
    workflow.on_toggle_rewrite(5)
    workflow.on_toggle_rewrite(7)

    with pytest.raises(RuntimeError):
        asyncio.run(workflow.on_apply_selected())
    assert workflow.is_applying is False
    assert gateway.moves[5].title == "Send Q3 report to Acme"
    assert workflow.applied == {5}
    assert workflow.selection == {7}
    assert [c.move_id for c in workflow.visible_candidates()] == [7, 9]


def test_apply_clears_ids_that_are_not_candidates():
    workflow, gateway, _ = make_workflow()
    workflow.on_toggle_rewrite(5)
    workflow.on_toggle_rewrite(42)

    asyncio.run(workflow.on_apply_selected())

    assert gateway.patches() == [("patch_move", 5, {"title": "Send Q3 report to Acme"})]
    assert workflow.selection == set()


class HeldGateway(FakeGateway):
    """Holds every title patch until `release` is set."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.release = None
        self.in_flight = 0
        self.peak = 0

    async def patch_move(self, move_id, fields):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await self.release.wait()
            return await super().patch_move(move_id, fields)
        finally:
            self.in_flight -= 1


def held_workflow():
    gateway = HeldGateway(sample_moves(), triage=sample_result())
    workflow = TriageWorkflow(gateway, board=Board(gateway))
    asyncio.run(workflow.on_refresh_triage())
    for move_id in (5, 7, 9):
        workflow.on_toggle_rewrite(move_id)
    return workflow, gateway


def test_batch_patches_are_in_flight_together():
    workflow, gateway = held_workflow()

    async def scenario():
        gateway.release = asyncio.Event()
        task = asyncio.create_task(workflow.on_apply_selected())
        for _ in range(5):
            await asyncio.sleep(0)
        in_flight = gateway.in_flight
        assert workflow.is_applying is True
        gateway.release.set()
        outcome = await task
        return in_flight, outcome

    in_flight, outcome = asyncio.run(scenario())
    assert in_flight == 3
    assert gateway.peak == 3
    assert sorted(outcome.succeeded) == [5, 7, 9]


def test_refresh_while_applying_keeps_new_run_clean():
    workflow, gateway = held_workflow()
    gateway.triage = sample_result("run-2")

    async def scenario():
        gateway.release = asyncio.Event()
        task = asyncio.create_task(workflow.on_apply_selected())
        for _ in range(5):
            await asyncio.sleep(0)
        await workflow.on_refresh_triage()
        gateway.release.set()
        return await task

    outcome = asyncio.run(scenario())
    assert sorted(outcome.succeeded) == [5, 7, 9]
    assert workflow.result.run_id == "run-2"
    assert workflow.selection == set()
    assert workflow.applied == set()
    assert len(workflow.visible_candidates()) == 3


def test_empty_run_has_nothing_visible(empty_triage):
    workflow, _, _ = make_workflow(result=empty_triage)
    assert workflow.visible_candidates() == []
    assert empty_triage.summary["is_healthy"] is True
