from escrutinio.models.candidate import Candidate
from escrutinio.models.polling_table import PollingTable
from escrutinio.models.table_assignment import TableAssignment
from escrutinio.models.table_validation import TableValidation
from escrutinio.models.tally_count import TallyCount
from escrutinio.models.user import User

__all__ = [
    "User",
    "PollingTable",
    "TableAssignment",
    "Candidate",
    "TallyCount",
    "TableValidation",
]
