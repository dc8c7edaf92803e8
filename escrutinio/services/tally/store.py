from flask import current_app

from escrutinio.services.tally.commands import (
    DECREMENT,
    INCREMENT,
    SET_ABSOLUTE,
    UNDO_LAST,
    UndoEntry,
)
from escrutinio.services.tally.errors import ApplyError


class UndoStack:
    """Holds the last applied mutation per table for one listening session."""

    def __init__(self):
        self._entries = {}

    def push(self, entry):
        self._entries[entry.table_id] = entry

    def peek(self, table_id):
        return self._entries.get(table_id)

    def clear(self, table_id):
        self._entries.pop(table_id, None)

    def __contains__(self, table_id):
        return table_id in self._entries


class TallyStore:
    def __init__(self, repository, election_id, undo_stack=None):
        self.repository = repository
        self.election_id = election_id
        self.undo = undo_stack if undo_stack is not None else UndoStack()

    def count(self, table_id, office, key):
        return self.repository.get_count(table_id, self.election_id, office, key)

    def snapshot(self, table_id):
        return self.repository.snapshot(table_id, self.election_id)

    def is_validated(self, table_id):
        return self.repository.is_validated(table_id, self.election_id)

    def apply(self, table_id, command):
        if self.is_validated(table_id):
            raise ApplyError("validated")

        if command.action == UNDO_LAST:
            return self._undo(table_id)

        key = command.count_key
        # Always read the persisted value; another writer may have corrected it.
        current = self.count(table_id, command.office, key)

        if command.action == INCREMENT:
            new_count = current + command.magnitude
        elif command.action == DECREMENT:
            new_count = max(0, current - command.magnitude)
        elif command.action == SET_ABSOLUTE:
            new_count = command.magnitude
        else:
            raise ValueError(f"Unknown tally action: {command.action}")

        self.repository.set_count(table_id, self.election_id, command.office, key, new_count)

        entry = UndoEntry(
            table_id=table_id,
            office=command.office,
            target_key=key,
            previous_count=current,
            applied_command=command,
        )
        self.undo.push(entry)

        return {
            "action": command.action,
            "office": command.office,
            "target_key": key,
            "previous_count": current,
            "new_count": new_count,
            "undo_entry": entry,
        }

    def _undo(self, table_id):
        entry = self.undo.peek(table_id)
        if entry is None:
            raise ApplyError("no-undo-available")

        self.repository.set_count(
            table_id,
            self.election_id,
            entry.office,
            entry.target_key,
            entry.previous_count,
        )
        self.undo.clear(table_id)
        current_app.logger.info(
            "Undid %s on table %s (%s restored to %s)",
            entry.applied_command.action,
            table_id,
            entry.target_key,
            entry.previous_count,
        )

        return {
            "action": UNDO_LAST,
            "office": entry.office,
            "target_key": entry.target_key,
            "previous_count": None,
            "new_count": entry.previous_count,
            "undo_entry": None,
        }

    def validate(self, table_id, validated_by):
        record = self.repository.record_validation(table_id, self.election_id, validated_by)
        self.undo.clear(table_id)
        return record
