from collections import namedtuple

from escrutinio.extensions import db
from escrutinio.models import Candidate, PollingTable, TableAssignment

RosterEntry = namedtuple("RosterEntry", ["key", "display_name", "ballot_number", "office"])


class RosterProvider:
    """Reads the candidates of an election from the ``candidates`` table."""

    def roster(self, election_id, office=None):
        query = Candidate.query.filter_by(election_id=election_id)
        if office is not None:
            query = query.filter_by(office=office)
        candidates = query.order_by(Candidate.office, Candidate.id).all()
        return [
            RosterEntry(
                key=candidate.key,
                display_name=candidate.display_name,
                ballot_number=candidate.ballot_number,
                office=candidate.office,
            )
            for candidate in candidates
        ]

    def offices(self, election_id):
        rows = (
            db.session.query(Candidate.office)
            .filter_by(election_id=election_id)
            .distinct()
            .order_by(Candidate.office)
            .all()
        )
        return [row[0] for row in rows]


class AssignmentLookup:
    """Which polling tables an operator may count votes for."""

    def table_ids_for(self, user):
        if user is None:
            return set()
        if getattr(user, "is_admin", False):
            return {table_id for (table_id,) in db.session.query(PollingTable.id).all()}
        rows = db.session.query(TableAssignment.table_id).filter_by(user_id=user.id).all()
        return {table_id for (table_id,) in rows}

    def can_operate(self, user, table_id):
        return table_id in self.table_ids_for(user)
