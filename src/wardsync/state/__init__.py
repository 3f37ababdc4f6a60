"""State layer.

The entity store is the single source of truth for ward content; every
change it makes is reported as ChangeRecords through the shared ticker.
"""

from wardsync.state.generator import EntityGenerator, WardGenerator
from wardsync.state.store import EntityStore
from wardsync.state.ticker import ChangeBatch, MutationTicker
from wardsync.state.tracker import ChangeTracker, diff_entities, diff_trees, flatten

__all__ = [
    "ChangeBatch",
    "ChangeTracker",
    "EntityGenerator",
    "EntityStore",
    "MutationTicker",
    "WardGenerator",
    "diff_entities",
    "diff_trees",
    "flatten",
]
