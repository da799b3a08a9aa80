"""
Tests for the server-side triage run.
"""
from moveboard.pipeline import (
    DEFAULT_FIELD_VALUES, backfill_fields, fill_pipeline_gaps, pipeline_issues, run_triage,
)
from moveboard.schema import DrainType, Lane, RewriteCandidate, PROMOTE, FILL_FIELD


def sized(**fields):
    fields.setdefault("effort_estimate", 1)
    fields.setdefault("drain_type", "deep")
    return fields


def lanes_of(store, client):
    return {m.title: m.lane for m in store.list_moves(client_id=client.id)}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Pipeline gaps
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_pipeline_issues_empty_client():
    assert pipeline_issues([]) == [
        "No active move (Today)",
        "No queued move (Up next)",
        "Empty backlog",
    ]


def test_queued_promoted_to_active_then_backlog_to_queued(store):
    client = store.create_client("Acme")
    store.create_move(sized(title="Next", lane="queued", client_id=client.id))
    store.create_move(sized(title="Later", lane="backlog", client_id=client.id))
    store.create_move(sized(title="Much later", lane="backlog", client_id=client.id))

    actions = fill_pipeline_gaps(store, client)

    assert [(a.title, a.from_lane, a.to_lane) for a in actions] == [
        ("Next", "queued", "active"),
        ("Later", "backlog", "queued"),
    ]
    assert lanes_of(store, client) == {
        "Next": Lane.ACTIVE, "Later": Lane.QUEUED, "Much later": Lane.BACKLOG,
    }


def test_backlog_promoted_straight_to_active(store):
    client = store.create_client("Acme")
    store.create_move(sized(title="Only", lane="backlog", client_id=client.id))

    actions = fill_pipeline_gaps(store, client)

    assert [a.to_lane for a in actions] == ["active"]
    assert lanes_of(store, client) == {"Only": Lane.ACTIVE}


def test_healthy_pipeline_untouched(store):
    client = store.create_client("Acme")
    for lane in ("active", "queued", "backlog"):
        store.create_move(sized(title=lane, lane=lane, client_id=client.id))
    assert fill_pipeline_gaps(store, client) == []


def test_backfill_missing_fields(store):
    move = store.create_move({"title": "Unsized"})
    store.create_move(sized(title="Sized"))

    actions = backfill_fields(store, store.list_moves())

    assert {(a.move_id, a.field, a.value) for a in actions} == {
        (move.id, "effort_estimate", DEFAULT_FIELD_VALUES["effort_estimate"]),
        (move.id, "drain_type", DEFAULT_FIELD_VALUES["drain_type"]),
    }
    refreshed = store.get(move.id)
    assert refreshed.effort_estimate == 2
    assert refreshed.drain_type == DrainType.ADMIN


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Full run
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_run_triage_reports_actions_and_health(store):
    acme = store.create_client("Acme")
    store.create_client("Beta")
    store.create_move(sized(title="Next", lane="queued", client_id=acme.id))
    store.create_move({"title": "Later", "lane": "backlog", "client_id": acme.id})

    result = run_triage(store)

    kinds = [a.kind for a in result.auto_actions]
    assert kinds.count(PROMOTE) == 2
    assert kinds.count(FILL_FIELD) == 2
    assert result.rewrite_candidates == []
    assert result.pipeline_health.total_clients == 2
    issues = {c["client_name"]: c["issues"] for c in result.pipeline_health.clients_with_issues}
    assert issues["Acme"] == ["Empty backlog"]
    assert len(issues["Beta"]) == 3
    assert result.summary["is_healthy"] is False
    assert len(result.run_id) == 12


def test_run_triage_filters_suggestions(store):
    keep = store.create_move(sized(title="stuff", lane="active"))
    same = store.create_move(sized(title="misc", lane="active"))
    done = store.create_move(sized(title="old", lane="active"))
    store.complete_move(done.id)

    def suggester(moves, clients):
        return [
            RewriteCandidate(keep.id, "stuff", "", "Send weekly report"),
            RewriteCandidate(same.id, "misc", "", "misc"),
            RewriteCandidate(done.id, "old", "", "Something new"),
            RewriteCandidate(999, "ghost", "", "Boo"),
            RewriteCandidate(keep.id, "stuff", "", "   "),
        ]

    result = run_triage(store, suggester)
    assert [c.move_id for c in result.rewrite_candidates] == [keep.id]


def test_run_triage_round_trips_through_json(store):
    store.create_client("Acme")
    result = run_triage(store)
    data = result.to_dict()
    assert data["summary"]["pipeline_issue_count"] == 1
    assert type(result).from_dict(data).pipeline_health.total_clients == 1
