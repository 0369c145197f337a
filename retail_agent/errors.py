"""Error taxonomy for the retail agent.

Transient remote errors are retried and then escalated to a fallback.
Policy violations are rejected without retry. Fatal session errors end the
session with a manual instruction. Structural mismatches (no matching
product, unverifiable filter) are not exceptions; components return
sentinels for them.
"""

from __future__ import annotations


class RetailAgentError(Exception):
    """Base class for all retail agent errors."""

    pass


class IntentError(RetailAgentError):
    """Raised when a request has no usable product query."""

    pass


class TransientRemoteError(RetailAgentError):
    """A remote call failed in a way that may succeed on retry."""

    def __init__(self, message: str, action: str | None = None) -> None:
        super().__init__(message)
        self.action = action


class ChannelTimeoutError(TransientRemoteError):
    """No response arrived within the caller's timeout."""

    def __init__(self, action: str, timeout: float) -> None:
        super().__init__(f"{action} timed out after {timeout:g}s", action)
        self.timeout = timeout


class ChannelClosedError(TransientRemoteError):
    """The message channel to the page is not connected."""

    pass


class NotReadyError(TransientRemoteError):
    """The page answered but its agent was not ready to act."""

    pass


class PolicyViolationError(RetailAgentError):
    """A sensitive action was requested without human confirmation."""

    pass


class FatalSessionError(RetailAgentError):
    """The session cannot continue (tab gone, unrecoverable navigation)."""

    pass


class TabClosedError(FatalSessionError):
    """The tab bound to the session no longer exists."""

    def __init__(self, tab_id: object) -> None:
        super().__init__(f"Tab {tab_id} was closed")
        self.tab_id = tab_id
