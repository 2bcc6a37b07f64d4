"""
Undo/redo over a stream of document values.

`HistoryState` is an immutable ``{past, present, future}`` triple and the
module-level functions are pure transitions on it. `UndoRedoStack` holds the
current state for callers that want a mutable handle.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

DEFAULT_LIMIT = 50


@dataclass(frozen=True)
class HistoryState:
    past: tuple[Any, ...] = ()
    present: Any = None
    future: tuple[Any, ...] = ()


def record(state: HistoryState, value: Any, *, limit: int = DEFAULT_LIMIT) -> HistoryState:
    if value == state.present:
        return state
    past = state.past + (state.present,) if state.present is not None else state.past
    if limit >= 0 and len(past) > limit:
        past = past[len(past) - limit :]
    return HistoryState(past=past, present=copy.deepcopy(value), future=())


def undo(state: HistoryState) -> HistoryState:
    if not state.past:
        return state
    return HistoryState(
        past=state.past[:-1],
        present=state.past[-1],
        future=(state.present,) + state.future,
    )


def redo(state: HistoryState) -> HistoryState:
    if not state.future:
        return state
    return HistoryState(
        past=state.past + (state.present,),
        present=state.future[0],
        future=state.future[1:],
    )


@dataclass
class UndoRedoStack:
    limit: int = DEFAULT_LIMIT
    state: HistoryState = field(default_factory=HistoryState)

    @property
    def present(self) -> Any:
        return self.state.present

    @property
    def can_undo(self) -> bool:
        return bool(self.state.past)

    @property
    def can_redo(self) -> bool:
        return bool(self.state.future)

    def record(self, value: Any) -> Any:
        self.state = record(self.state, value, limit=self.limit)
        return self.state.present

    def undo(self) -> Any:
        self.state = undo(self.state)
        return self.state.present

    def redo(self) -> Any:
        self.state = redo(self.state)
        return self.state.present

    def reset(self, value: Any = None) -> None:
        """Start a fresh history, e.g. when switching documents."""
        self.state = HistoryState(present=copy.deepcopy(value))
