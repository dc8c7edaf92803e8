from flask import current_app

from escrutinio.models import PollingTable
from escrutinio.services.tally.commands import RESERVED_KEYS

WILDCARDS = {"", "todos", "todas", "all"}
BREAKDOWN_LEVELS = {"region": "region", "comuna": "comuna", "local": "local_id", "table": "code"}


def _filter_value(value):
    if value is None:
        return None
    value = str(value).strip()
    return None if value.lower() in WILDCARDS else value


def tables_in_scope(region=None, comuna=None, local_id=None, table_ids=None):
    """Polling table ids under a region/comuna/local, optionally a subset."""
    query = PollingTable.query
    region = _filter_value(region)
    comuna = _filter_value(comuna)
    local_id = _filter_value(local_id)
    if region is not None:
        query = query.filter_by(region=region)
    if comuna is not None:
        query = query.filter_by(comuna=comuna)
    if local_id is not None:
        query = query.filter_by(local_id=local_id)
    if table_ids:
        query = query.filter(PollingTable.id.in_(list(table_ids)))
    return [table.id for table in query.order_by(PollingTable.id).all()]


def consolidate(snapshots, office, roster=()):
    """Sum one office's counts across complete table snapshots.

    Keys are ordered by roster order, then the reserved keys, then the order
    in which they are first seen; rows are sorted by descending votes with a
    stable sort so ties keep that order.
    """
    totals = {}
    for entry in roster:
        if entry.office == office:
            totals.setdefault(entry.key, 0)
    for key in RESERVED_KEYS:
        totals.setdefault(key, 0)

    for snapshot in snapshots:
        for key, votes in snapshot.get("counts", {}).get(office, {}).items():
            totals[key] = totals.get(key, 0) + votes

    total_votes = sum(totals.values())
    names = {entry.key: entry.display_name for entry in roster if entry.office == office}

    rows = []
    for key, votes in totals.items():
        percentage = (votes * 100 / total_votes) if total_votes > 0 else 0
        rows.append(
            {
                "candidate_key": key,
                "display_name": names.get(key),
                "votes": votes,
                "percentage": percentage,
            }
        )
    rows.sort(key=lambda row: -row["votes"])

    return {
        "office": office,
        "totals": totals,
        "rows": rows,
        "total_votes": total_votes,
    }


class AggregationEngine:
    """Keeps live totals for one office over a changing set of tables.

    Each table is watched through its own repository subscription. A
    snapshot replaces everything known about that table and triggers a full
    recomputation, so repeated or out-of-order snapshots cannot drift the
    totals. Tables with no data yet, or whose stream failed, count as zero.
    """

    def __init__(self, repository, election_id, office, roster=(), on_change=None):
        self.repository = repository
        self.election_id = election_id
        self.office = office
        self.roster = list(roster)
        self.listeners = [on_change] if on_change else []
        self._snapshots = {}
        self._subscriptions = {}
        self._order = []
        self.consolidated = consolidate([], office, self.roster)

    @property
    def table_ids(self):
        return list(self._order)

    def watch(self, table_ids):
        wanted = list(dict.fromkeys(table_ids))
        for table_id in list(self._order):
            if table_id not in wanted:
                self.remove_table(table_id, recompute=False)
        for table_id in wanted:
            if table_id not in self._subscriptions:
                self.add_table(table_id, recompute=False)
        return self.recompute()

    def add_table(self, table_id, recompute=True):
        if table_id in self._subscriptions:
            return self.consolidated
        self._order.append(table_id)
        self._subscriptions[table_id] = self.repository.subscribe(
            table_id,
            self.election_id,
            lambda snapshot, table_id=table_id: self._receive(table_id, snapshot),
            lambda error, table_id=table_id: self._fault(table_id, error),
        )
        if recompute:
            return self.recompute()
        return self.consolidated

    def remove_table(self, table_id, recompute=True):
        subscription = self._subscriptions.pop(table_id, None)
        if subscription is not None:
            subscription.cancel()
        self._snapshots.pop(table_id, None)
        if table_id in self._order:
            self._order.remove(table_id)
        if recompute:
            return self.recompute()
        return self.consolidated

    def close(self):
        for table_id in list(self._order):
            self.remove_table(table_id, recompute=False)

    def add_listener(self, listener):
        self.listeners.append(listener)

    def snapshot_for(self, table_id):
        return self._snapshots.get(table_id)

    def _receive(self, table_id, snapshot):
        if table_id not in self._order:
            return
        self._snapshots[table_id] = snapshot
        self.recompute()

    def _fault(self, table_id, error):
        current_app.logger.warning(
            "Table %s left out of %s totals: %s", table_id, self.office, error
        )
        self._snapshots.pop(table_id, None)
        self.recompute()

    def _known_snapshots(self):
        return [
            self._snapshots[table_id]
            for table_id in self._order
            if table_id in self._snapshots
        ]

    def recompute(self):
        self.consolidated = consolidate(self._known_snapshots(), self.office, self.roster)
        for listener in self.listeners:
            listener(self.consolidated)
        return self.consolidated

    def percentage(self, key):
        total = self.consolidated["total_votes"]
        if total == 0:
            return 0
        return self.consolidated["totals"].get(key, 0) * 100 / total

    def breakdown(self, level):
        """Consolidated totals grouped by region, comuna, local or table."""
        if level not in BREAKDOWN_LEVELS:
            raise ValueError(f"Unknown breakdown level: {level}")
        field = BREAKDOWN_LEVELS[level]

        groups = {}
        for snapshot in self._known_snapshots():
            groups.setdefault(snapshot.get(field), []).append(snapshot)

        result = []
        for name, snapshots in groups.items():
            consolidated = consolidate(snapshots, self.office, self.roster)
            result.append(
                {
                    "level": level,
                    "name": name,
                    "tables": len(snapshots),
                    "validated_tables": sum(1 for item in snapshots if item.get("validated")),
                    "rows": consolidated["rows"],
                    "total_votes": consolidated["total_votes"],
                }
            )
        result.sort(key=lambda group: -group["total_votes"])
        return result
