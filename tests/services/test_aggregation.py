import pytest
from sqlalchemy.exc import OperationalError

from escrutinio.services.tally import AggregationEngine, RosterEntry, consolidate, tables_in_scope

ELECTION = "2025"
ROSTER = [
    RosterEntry("X", "Candidate X", "1", "president"),
    RosterEntry("Y", "Candidate Y", "2", "president"),
    RosterEntry("Z", "Candidate Z", "3", "president"),
    RosterEntry("D", "Deputy D", "1", "deputy"),
]


def _seed(repository, table_id, counts, office="president"):
    for key, votes in counts.items():
        repository.set_count(table_id, ELECTION, office, key, votes)


def _snapshot(counts, **extra):
    snapshot = {"counts": {"president": counts}}
    snapshot.update(extra)
    return snapshot


@pytest.fixture()
def seeded(repository, tables):
    _seed(repository, tables[0].id, {"X": 3, "Y": 5})
    _seed(repository, tables[1].id, {"X": 2, "Z": 1})
    return tables


@pytest.fixture()
def engine(repository):
    engine = AggregationEngine(repository, ELECTION, "president", ROSTER)
    yield engine
    engine.close()


def test_consolidate_sums_and_orders_ties_by_roster():
    result = consolidate(
        [_snapshot({"X": 3, "Y": 5}), _snapshot({"X": 2, "Z": 1})], "president", ROSTER
    )

    assert result["totals"] == {"X": 5, "Y": 5, "Z": 1, "blank": 0, "null": 0}
    assert [row["candidate_key"] for row in result["rows"]] == ["X", "Y", "Z", "blank", "null"]
    assert result["total_votes"] == 11
    assert "D" not in result["totals"]


def test_consolidate_is_independent_of_snapshot_order():
    first = _snapshot({"X": 3, "Y": 5, "blank": 2})
    second = _snapshot({"X": 2, "Z": 1, "null": 1})

    forward = consolidate([first, second], "president", ROSTER)
    backward = consolidate([second, first], "president", ROSTER)
    assert forward == backward


def test_consolidate_keeps_unknown_keys_in_encounter_order():
    result = consolidate([_snapshot({"Q": 1, "X-objected": 1})], "president", ())
    assert list(result["totals"]) == ["blank", "null", "Q", "X-objected"]
    assert [row["candidate_key"] for row in result["rows"]] == ["Q", "X-objected", "blank", "null"]
    assert result["rows"][0]["display_name"] is None


def test_percentages():
    result = consolidate([_snapshot({"X": 3, "Y": 1})], "president", ROSTER)
    rows = {row["candidate_key"]: row for row in result["rows"]}
    assert rows["X"]["percentage"] == pytest.approx(75.0)
    assert rows["Y"]["percentage"] == pytest.approx(25.0)
    assert rows["X"]["display_name"] == "Candidate X"


def test_percentages_with_no_votes():
    result = consolidate([], "president", ROSTER)
    assert result["total_votes"] == 0
    assert all(row["percentage"] == 0 for row in result["rows"])


def test_engine_totals_across_watched_tables(engine, seeded):
    result = engine.watch([seeded[0].id, seeded[1].id])

    assert result["totals"]["X"] == 5
    assert result["totals"]["Y"] == 5
    assert result["totals"]["Z"] == 1
    assert engine.percentage("X") == pytest.approx(5 * 100 / 11)
    assert engine.percentage("missing") == 0


def test_engine_updates_on_every_committed_change(repository, seeded):
    changes = []
    engine = AggregationEngine(repository, ELECTION, "president", ROSTER, on_change=changes.append)
    engine.watch([seeded[0].id, seeded[1].id])
    seen = len(changes)

    repository.set_count(seeded[0].id, ELECTION, "president", "X", 4)

    assert len(changes) == seen + 1
    assert changes[-1]["totals"]["X"] == 6
    engine.close()


def test_repeated_snapshots_are_not_counted_twice(engine, repository, seeded):
    engine.watch([seeded[0].id, seeded[1].id])
    repository.publish(seeded[0].id, ELECTION)
    repository.publish(seeded[0].id, ELECTION)

    assert engine.consolidated["totals"]["X"] == 5
    assert engine.consolidated["total_votes"] == 11


def test_table_without_data_counts_zero(engine, seeded):
    result = engine.watch([seeded[0].id, seeded[2].id])
    assert result["totals"]["X"] == 3
    assert engine.snapshot_for(seeded[2].id)["counts"] == {}


def test_removing_a_table_drops_its_votes(engine, repository, seeded):
    engine.watch([seeded[0].id, seeded[1].id])
    result = engine.remove_table(seeded[1].id)

    assert result["totals"]["X"] == 3
    assert result["totals"]["Z"] == 0
    assert repository.subscriber_count(seeded[1].id, ELECTION) == 0

    # Changes to a table that left the scope do not reach the totals.
    repository.set_count(seeded[1].id, ELECTION, "president", "Z", 9)
    assert engine.consolidated["totals"]["Z"] == 0


def test_rescoping_keeps_existing_subscriptions(engine, repository, seeded):
    engine.watch([seeded[0].id, seeded[1].id])
    engine.watch([seeded[0].id, seeded[2].id])

    assert engine.table_ids == [seeded[0].id, seeded[2].id]
    assert repository.subscriber_count(seeded[0].id, ELECTION) == 1
    assert repository.subscriber_count(seeded[1].id, ELECTION) == 0
    assert repository.subscriber_count(seeded[2].id, ELECTION) == 1


def test_close_cancels_every_subscription(repository, seeded):
    engine = AggregationEngine(repository, ELECTION, "president", ROSTER)
    engine.watch([table.id for table in seeded])
    engine.close()

    for table in seeded:
        assert repository.subscriber_count(table.id, ELECTION) == 0
    assert engine.table_ids == []


def test_unavailable_table_is_left_out(engine, repository, seeded, monkeypatch):
    engine.watch([seeded[0].id])

    def unavailable(table_id, election_id):
        raise OperationalError("SELECT tally_counts", {}, Exception("connection lost"))

    monkeypatch.setattr(repository, "snapshot", unavailable)
    result = engine.add_table(seeded[1].id)
    monkeypatch.undo()

    assert result["totals"]["X"] == 3
    assert engine.snapshot_for(seeded[1].id) is None

    # The stream recovers on the next committed change.
    repository.set_count(seeded[1].id, ELECTION, "president", "Z", 4)
    assert engine.consolidated["totals"]["X"] == 5
    assert engine.consolidated["totals"]["Z"] == 4


def test_failing_listener_does_not_stop_others(repository, seeded):
    received = []

    def broken(consolidated):
        raise RuntimeError("listener crashed")

    engine = AggregationEngine(repository, ELECTION, "president", ROSTER)
    engine.watch([seeded[0].id])
    engine.add_listener(broken)
    other = repository.subscribe(seeded[0].id, ELECTION, received.append)

    repository.set_count(seeded[0].id, ELECTION, "president", "Y", 6)

    assert received[-1]["counts"]["president"]["Y"] == 6
    other.cancel()
    engine.close()


def test_breakdown_by_comuna(engine, seeded, repository):
    _seed(repository, seeded[2].id, {"Y": 20})
    engine.watch([table.id for table in seeded])

    groups = engine.breakdown("comuna")
    assert [group["name"] for group in groups] == ["Coyhaique", "Puerto Aysen"]
    assert groups[0]["tables"] == 1
    assert groups[0]["total_votes"] == 20
    assert groups[1]["tables"] == 2
    assert groups[1]["total_votes"] == 11
    assert groups[1]["validated_tables"] == 0


def test_breakdown_by_table(engine, seeded):
    engine.watch([seeded[0].id, seeded[1].id])
    groups = engine.breakdown("table")
    assert {group["name"] for group in groups} == {"LAB-PA-M1", "LAB-PA-M2"}


def test_breakdown_rejects_unknown_level(engine):
    with pytest.raises(ValueError):
        engine.breakdown("country")


def test_tables_in_scope(tables):
    all_ids = [table.id for table in tables]
    assert tables_in_scope(region="Aysen") == all_ids
    assert tables_in_scope(region="todos", comuna="Todas") == all_ids
    assert tables_in_scope(comuna="Puerto Aysen") == all_ids[:2]
    assert tables_in_scope(local_id="LIC-CO") == all_ids[2:]
    assert tables_in_scope(local_id="LAB-PA", table_ids=[all_ids[1]]) == [all_ids[1]]
    assert tables_in_scope(region="Magallanes") == []
