class TallyError(Exception):
    """Base class for recoverable tally engine failures."""

    default_message = "The tally could not be updated."

    def __init__(self, reason, message=None):
        self.reason = reason
        self.message = message or MESSAGES.get(reason, self.default_message)
        super().__init__(self.message)


class ParseError(TallyError):
    default_message = "The command was not understood."


class ApplyError(TallyError):
    default_message = "The command could not be applied."


class PersistenceError(TallyError):
    default_message = "The vote count could not be saved. Please try again."

    def __init__(self, message=None):
        super().__init__("persistence-failed", message)


class StreamFault(TallyError):
    """Speech recognition stopped with an error (e.g. microphone denied)."""

    default_message = "Speech recognition stopped unexpectedly."


class SourceUnavailable(TallyError):
    default_message = "The tally stream for this table is unavailable."

    def __init__(self, table_id, message=None):
        self.table_id = table_id
        super().__init__("source-unavailable", message)


MESSAGES = {
    "unrecognized": "No candidate or command was recognized.",
    "ambiguous": "The command matches more than one candidate.",
    "invalid-magnitude": "A valid, non-negative vote count is required.",
    "validated": "This table has been validated and can no longer change.",
    "no-undo-available": "There is no previous command to undo.",
    "not-allowed": "Microphone permission is required to count votes.",
    "not-assigned": "You are not assigned to this polling table.",
}
