import threading
from contextlib import contextmanager
from functools import partial

from flask import current_app, has_app_context

from escrutinio.services.tally.commands import UNDO_LAST, Command
from escrutinio.services.tally.errors import ApplyError, StreamFault, TallyError
from escrutinio.services.tally.store import TallyStore

IDLE = "idle"
LISTENING = "listening"
ERROR = "error"


class TranscriptSource:
    """In-process provider of recognized utterances.

    ``listen`` prepares one continuous run of segments and returns a handle
    with ``start()`` and ``cancel()``. Once started, the run delivers each
    segment to ``on_result`` and calls ``on_end`` when it terminates, or
    ``on_error`` on a fault. A cancelled run delivers nothing further. Once
    ``closed`` is true the session stops re-arming it.
    """

    closed = False

    def listen(self, on_result, on_error, on_end):
        raise NotImplementedError


class _Handle:
    def __init__(self, steps):
        self._steps = steps
        self.cancelled = False

    def start(self):
        for step in self._steps:
            if self.cancelled:
                return
            step()

    def cancel(self):
        self.cancelled = True


class SegmentSource(TranscriptSource):
    """Replays runs of already-transcribed utterances, one run per ``listen``."""

    def __init__(self, runs, error=None):
        self._runs = [list(run) for run in runs]
        self.error = error

    def listen(self, on_result, on_error, on_end):
        if not self._runs:
            self.closed = True
            if self.error is None:
                return _Handle([])
            return _Handle([partial(on_error, self.error)])

        run = self._runs.pop(0)
        if not self._runs and self.error is None:
            self.closed = True
        return _Handle([partial(on_result, text) for text in run] + [on_end])


class ListeningSession:
    """Gates when transcripts may change one table's tally.

    ``idle -> listening -> idle`` on an explicit stop, ``listening -> error
    -> idle`` on a recognition fault. Parse and apply errors are turned into
    messages and leave the session listening.
    """

    def __init__(
        self,
        table_id,
        election_id,
        repository,
        roster_provider,
        parser,
        operator=None,
        assignments=None,
        office=None,
    ):
        self.table_id = table_id
        self.election_id = election_id
        self.roster_provider = roster_provider
        self.parser = parser
        self.operator = operator
        self.assignments = assignments
        self.office = office
        self.store = TallyStore(repository, election_id)

        self.state = IDLE
        self.last_utterance = None
        self.last_error = None

        self._app = current_app._get_current_object()
        self._lock = threading.RLock()
        self._source = None
        self._handle = None
        self._arming = False
        self._run_ended = False

    @contextmanager
    def _context(self):
        if has_app_context():
            yield
        else:
            with self._app.app_context():
                yield

    def start(self, source=None):
        with self._lock, self._context():
            if self.state == LISTENING:
                return self.status()
            if self.assignments is not None and not self.assignments.can_operate(
                self.operator, self.table_id
            ):
                raise ApplyError("not-assigned")
            if self.store.is_validated(self.table_id):
                raise ApplyError("validated")

            self.state = LISTENING
            self.last_error = None
            current_app.logger.info("Listening started on table %s", self.table_id)

            if source is not None:
                self._source = source
                self._arm()
            return self.status()

    def _arm(self):
        with self._lock:
            self._arming = True
            try:
                while (
                    self.state == LISTENING
                    and self._source is not None
                    and not self._source.closed
                ):
                    self._run_ended = False
                    handle = self._source.listen(
                        self.handle_transcript, self.fail, self._end_run
                    )
                    self._handle = handle
                    handle.start()
                    if not self._run_ended:
                        # Still running, or stopped; _end_run re-arms later.
                        return
            finally:
                self._arming = False

    def _end_run(self):
        with self._lock:
            self._run_ended = True
            if not self._arming:
                self._arm()

    def stop(self):
        # Holding the lock means any dispatched command has finished.
        with self._lock, self._context():
            self._release_source()
            if self.state != IDLE:
                current_app.logger.info("Listening stopped on table %s", self.table_id)
            self.state = IDLE
            return self.status()

    def fail(self, error):
        with self._lock, self._context():
            fault = error if isinstance(error, StreamFault) else StreamFault(str(error))
            self.state = ERROR
            self.last_error = fault.message
            current_app.logger.warning(
                "Speech recognition fault on table %s: %s", self.table_id, fault.reason
            )
            self._release_source()
            self.state = IDLE
            return self.status()

    def _release_source(self):
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._source = None

    def handle_transcript(self, utterance):
        with self._lock, self._context():
            if self.state != LISTENING:
                return self._result(False, utterance, "The session is not listening.")

            self.last_utterance = utterance
            try:
                roster = self.roster_provider.roster(self.election_id)
                command = self.parser.parse(utterance, self.office, roster)
                outcome = self.store.apply(self.table_id, command)
            except TallyError as exc:
                current_app.logger.info(
                    "Rejected %r on table %s: %s", utterance, self.table_id, exc.reason
                )
                return self._result(False, utterance, exc.message, reason=exc.reason)

            return self._result(True, utterance, _describe(outcome), command, outcome)

    def undo(self):
        with self._lock, self._context():
            command = Command(action=UNDO_LAST, office=self.office)
            try:
                outcome = self.store.apply(self.table_id, command)
            except TallyError as exc:
                return self._result(False, None, exc.message, reason=exc.reason)
            return self._result(True, None, _describe(outcome), command, outcome)

    def status(self):
        return {
            "table_id": self.table_id,
            "election_id": self.election_id,
            "office": self.office,
            "state": self.state,
            "last_utterance": self.last_utterance,
            "last_error": self.last_error,
            "can_undo": self.table_id in self.store.undo,
        }

    def _result(self, ok, utterance, message, command=None, outcome=None, reason=None):
        result = {
            "ok": ok,
            "utterance": utterance,
            "message": message,
            "reason": reason,
            "state": self.state,
            "command": None,
            "new_count": None,
        }
        if command is not None:
            result["command"] = {
                "action": command.action,
                "target_key": outcome["target_key"] if outcome else command.target_key,
                "magnitude": command.magnitude,
                "office": outcome["office"] if outcome else command.office,
                "objected": command.objected,
            }
        if outcome is not None:
            result["new_count"] = outcome["new_count"]
        return result


def _describe(outcome):
    if outcome["action"] == UNDO_LAST:
        return (
            f"Undid the last command: {outcome['target_key']} "
            f"is back to {outcome['new_count']}."
        )
    return f"{outcome['target_key']} now has {outcome['new_count']} votes."


class SessionRegistry:
    """Listening sessions of this process, keyed by operator and table."""

    def __init__(self):
        self._sessions = {}
        self._lock = threading.Lock()

    def get(self, operator_id, table_id):
        with self._lock:
            return self._sessions.get((operator_id, table_id))

    def get_or_create(self, operator_id, table_id, factory):
        with self._lock:
            session = self._sessions.get((operator_id, table_id))
            if session is None:
                session = factory()
                self._sessions[(operator_id, table_id)] = session
            return session

    def replace(self, operator_id, table_id, session):
        with self._lock:
            previous = self._sessions.get((operator_id, table_id))
            self._sessions[(operator_id, table_id)] = session
        if previous is not None:
            previous.stop()
        return session

    def for_table(self, table_id):
        with self._lock:
            return [
                session
                for (_, session_table), session in self._sessions.items()
                if session_table == table_id
            ]

    def stop_table(self, table_id):
        for session in self.for_table(table_id):
            session.stop()
