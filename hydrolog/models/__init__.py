from hydrolog.models.checklist import CategoryCompletion, ChecklistDay
from hydrolog.models.issue import FlaggedIssue
from hydrolog.models.revision import SlotRevision
from hydrolog.models.slot import GeneratorLog, TransformerLog

__all__ = [
    "GeneratorLog",
    "TransformerLog",
    "SlotRevision",
    "ChecklistDay",
    "CategoryCompletion",
    "FlaggedIssue",
]
