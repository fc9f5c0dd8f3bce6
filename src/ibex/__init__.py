"""
Ibex - serverless, git-backed issue records.

Records live on a dedicated branch and sync between clones with a
field-aware three-way merge.
"""

__version__ = "0.1.0"

# Re-export core models for convenience
from ibex.core.config.models import IbexConfig
from ibex.core.records.models import Record, RecordKind, RecordStatus

__all__ = ["IbexConfig", "Record", "RecordKind", "RecordStatus", "__version__"]
