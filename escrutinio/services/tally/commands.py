from dataclasses import dataclass

INCREMENT = "INCREMENT"
DECREMENT = "DECREMENT"
SET_ABSOLUTE = "SET_ABSOLUTE"
UNDO_LAST = "UNDO_LAST"

BLANK = "blank"
NULL = "null"
RESERVED_KEYS = (BLANK, NULL)

OBJECTED_SUFFIX = "-objected"


@dataclass(frozen=True)
class Command:
    action: str
    target_key: str = None
    magnitude: int = 1
    office: str = None
    objected: bool = False

    @property
    def count_key(self):
        """Key the command is tallied under; objected votes are kept apart."""
        if self.target_key is None:
            return None
        if self.objected:
            return f"{self.target_key}{OBJECTED_SUFFIX}"
        return self.target_key


@dataclass(frozen=True)
class UndoEntry:
    table_id: int
    office: str
    target_key: str
    previous_count: int
    applied_command: Command
