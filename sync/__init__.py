from .coordinator import Conflict, ConflictChoice, LoadOutcome, SaveOutcome, SaveState, SyncCoordinator
from .reducer import (
    Action,
    AddSection,
    RemoveSection,
    SetDocument,
    SetField,
    UpdatePersonalInfo,
    UpdateSection,
    UpdateSettings,
    apply_action,
)
from .session import EditorSession, create_session
from .undo import HistoryState, UndoRedoStack

__all__ = [
    "Action",
    "AddSection",
    "Conflict",
    "ConflictChoice",
    "EditorSession",
    "HistoryState",
    "LoadOutcome",
    "RemoveSection",
    "SaveOutcome",
    "SaveState",
    "SetDocument",
    "SetField",
    "SyncCoordinator",
    "UndoRedoStack",
    "UpdatePersonalInfo",
    "UpdateSection",
    "UpdateSettings",
    "apply_action",
    "create_session",
]
