"""
Link Profile System.

Pure pieces of the profile engine. The sync coordinator and session
resolution live in link.profile.sync and link.profile.session.

Components:
1. FieldCatalog - Declarative schema of required fields and weights
2. score() - Document -> CompletionSnapshot
3. ProgressStateMachine - Forward-only signup stages
4. ObservableState - What the UI subscribes to
"""

from .errors import ProfileSyncError
from .catalog import DEFAULT_CATALOG, FieldCatalog, FieldDefinition, FieldKind, ListPolicy
from .completion import CompletionSnapshot, IncompleteFieldReport, score
from .progress import ProgressStateMachine, SignupStage, parse_stage, stage_to_step
from .observable import ObservableState

__all__ = [
    "DEFAULT_CATALOG",
    "CompletionSnapshot",
    "FieldCatalog",
    "FieldDefinition",
    "FieldKind",
    "IncompleteFieldReport",
    "ListPolicy",
    "ObservableState",
    "ProfileSyncError",
    "ProgressStateMachine",
    "SignupStage",
    "parse_stage",
    "score",
    "stage_to_step",
]
