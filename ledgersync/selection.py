"""
Selection Controller

Tracks which bank account is active and tells the coordinator whenever the
active scope changes.

States:
    NoAccountSelected  - the owner has no accounts (or none chosen yet)
    AccountSelected    - one account is active

Every transition runs the scope-change hook, which resubscribes the remote
channels and recomputes everything for the new scope.
"""

from typing import Awaitable, Callable, Optional, Sequence, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict


class NoAccountSelected(BaseModel):
    model_config = ConfigDict(frozen=True)


class AccountSelected(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: UUID


SelectionState = Union[NoAccountSelected, AccountSelected]
ScopeChangeHook = Callable[[Optional[UUID]], Awaitable[None]]


class SelectionController:
    """State machine over the selected account."""

    def __init__(self, on_scope_change: ScopeChangeHook):
        self._state: SelectionState = NoAccountSelected()
        self._on_scope_change = on_scope_change
        self._logger = structlog.get_logger(__name__)

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def selected_id(self) -> Optional[UUID]:
        if isinstance(self._state, AccountSelected):
            return self._state.account_id
        return None

    async def select(self, account_id: Optional[UUID]) -> None:
        """
        Explicit selection. Always runs the hook, even when re-selecting
        the current account, so the caller gets a fresh scope.
        """
        await self._transition(account_id)

    async def on_accounts_loaded(self, account_ids: Sequence[UUID]) -> bool:
        """
        React to a freshly loaded account list.

        Selects the first account when nothing is selected, and falls back
        to the first (or none) when the selected account no longer exists.
        Returns True if a transition happened.
        """
        selected = self.selected_id
        if selected is None:
            if not account_ids:
                return False
            await self._transition(account_ids[0])
            return True
        if selected in account_ids:
            return False
        await self._transition(account_ids[0] if account_ids else None)
        return True

    async def on_account_deleted(
        self,
        deleted_id: UUID,
        remaining_ids: Sequence[UUID],
    ) -> bool:
        """Move to the next remaining account if the selected one was deleted."""
        if self.selected_id != deleted_id:
            return False
        await self._transition(remaining_ids[0] if remaining_ids else None)
        return True

    async def _transition(self, account_id: Optional[UUID]) -> None:
        previous = self.selected_id
        self._state = (
            AccountSelected(account_id=account_id)
            if account_id is not None
            else NoAccountSelected()
        )
        self._logger.info(
            "selection_changed",
            previous=str(previous) if previous else None,
            selected=str(account_id) if account_id else None,
        )
        await self._on_scope_change(account_id)
