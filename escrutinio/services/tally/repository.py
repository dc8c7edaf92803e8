import threading
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from escrutinio.extensions import db
from escrutinio.models import PollingTable, TableValidation, TallyCount
from escrutinio.services.tally.errors import ApplyError, PersistenceError, SourceUnavailable


class Subscription:
    """Handle returned by :meth:`TallyRepository.subscribe`; call ``cancel`` to stop."""

    def __init__(self, repository, key, on_snapshot, on_error=None):
        self.repository = repository
        self.key = key
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.active = True

    @property
    def table_id(self):
        return self.key[0]

    def cancel(self):
        if self.active:
            self.active = False
            self.repository._discard(self)

    def deliver(self, snapshot):
        if not self.active:
            return
        try:
            self.on_snapshot(snapshot)
        except Exception:
            current_app.logger.exception(
                "Tally listener failed for table %s", self.table_id
            )

    def fail(self, error):
        if not self.active:
            return
        if self.on_error is None:
            current_app.logger.warning(
                "Tally stream for table %s unavailable: %s", self.table_id, error
            )
            return
        self.on_error(error)


class TallyRepository:
    """Persists per-table vote counts and streams complete snapshots.

    Every committed change is followed by a fresh snapshot delivered to the
    table's subscribers, so listeners always receive a full replacement of
    the table state rather than a diff.
    """

    def __init__(self):
        self._subscriptions = {}
        self._lock = threading.Lock()

    def get_count(self, table_id, election_id, office, key):
        votes = (
            db.session.query(TallyCount.votes)
            .filter_by(
                table_id=table_id,
                election_id=election_id,
                office=office,
                candidate_key=key,
            )
            .scalar()
        )
        return votes or 0

    def set_count(self, table_id, election_id, office, key, votes):
        try:
            row = (
                TallyCount.query.filter_by(
                    table_id=table_id,
                    election_id=election_id,
                    office=office,
                    candidate_key=key,
                )
                .populate_existing()
                .first()
            )
            if row is None:
                row = TallyCount(
                    table_id=table_id,
                    election_id=election_id,
                    office=office,
                    candidate_key=key,
                )
                db.session.add(row)
            row.votes = votes
            row.updated_at = datetime.now(timezone.utc)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(
                "Could not save %s=%s for table %s: %s", key, votes, table_id, exc
            )
            raise PersistenceError() from exc

        current_app.logger.info(
            "Table %s %s/%s set to %s", table_id, office, key, votes
        )
        self.publish(table_id, election_id)
        return votes

    def snapshot(self, table_id, election_id):
        table = db.session.get(PollingTable, table_id)
        rows = (
            TallyCount.query.filter_by(table_id=table_id, election_id=election_id)
            .order_by(TallyCount.id)
            .populate_existing()
            .all()
        )

        counts = {}
        updated_at = None
        for row in rows:
            counts.setdefault(row.office, {})[row.candidate_key] = row.votes
            if row.updated_at is not None and (
                updated_at is None or row.updated_at > updated_at
            ):
                updated_at = row.updated_at

        return {
            "table_id": table_id,
            "code": table.code if table else None,
            "local_id": table.local_id if table else None,
            "comuna": table.comuna if table else None,
            "region": table.region if table else None,
            "election_id": election_id,
            "counts": counts,
            "updated_at": updated_at,
            "validated": self.is_validated(table_id, election_id),
        }

    def is_validated(self, table_id, election_id):
        found = (
            db.session.query(TableValidation.id)
            .filter_by(table_id=table_id, election_id=election_id)
            .first()
        )
        return found is not None

    def validation(self, table_id, election_id):
        record = TableValidation.query.filter_by(
            table_id=table_id, election_id=election_id
        ).first()
        return _validation_dict(record) if record else None

    def record_validation(self, table_id, election_id, validated_by):
        if self.is_validated(table_id, election_id):
            raise ApplyError("validated")

        counts = self.snapshot(table_id, election_id)["counts"]
        record = TableValidation(
            table_id=table_id,
            election_id=election_id,
            validated_by=validated_by,
            validated_at=datetime.now(timezone.utc),
            vote_counts=counts,
            status="validated",
        )
        try:
            db.session.add(record)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ApplyError("validated") from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error("Could not validate table %s: %s", table_id, exc)
            raise PersistenceError() from exc

        current_app.logger.info("Table %s validated by %s", table_id, validated_by)
        self.publish(table_id, election_id)
        return _validation_dict(record)

    def subscribe(self, table_id, election_id, on_snapshot, on_error=None):
        """Register a listener and deliver the current snapshot right away."""
        subscription = Subscription(self, (table_id, election_id), on_snapshot, on_error)
        with self._lock:
            self._subscriptions.setdefault(subscription.key, []).append(subscription)

        try:
            snapshot = self.snapshot(table_id, election_id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            subscription.fail(SourceUnavailable(table_id, str(exc)))
        else:
            subscription.deliver(snapshot)
        return subscription

    def publish(self, table_id, election_id):
        with self._lock:
            listeners = list(self._subscriptions.get((table_id, election_id), []))
        if not listeners:
            return

        try:
            snapshot = self.snapshot(table_id, election_id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            for subscription in listeners:
                subscription.fail(SourceUnavailable(table_id, str(exc)))
            return

        for subscription in listeners:
            subscription.deliver(snapshot)

    def subscriber_count(self, table_id, election_id):
        with self._lock:
            return len(self._subscriptions.get((table_id, election_id), []))

    def _discard(self, subscription):
        with self._lock:
            listeners = self._subscriptions.get(subscription.key, [])
            if subscription in listeners:
                listeners.remove(subscription)
            if not listeners:
                self._subscriptions.pop(subscription.key, None)


def _validation_dict(record):
    return {
        "table_id": record.table_id,
        "election_id": record.election_id,
        "validated_by": record.validated_by,
        "timestamp": record.validated_at,
        "vote_counts": record.vote_counts,
        "status": record.status,
    }
