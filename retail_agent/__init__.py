"""Retail purchase automation: intent in, checkout-ready tab out."""

from .agent import RetailAgent
from .bridge import WebSocketBridge
from .channel import ChannelBrowser, ChannelPageAgent
from .intent import parse_intent_simple
from .models import Intent, Outcome, Session, SessionState
from .orchestrator import PurchaseOrchestrator

__all__ = [
    "RetailAgent",
    "WebSocketBridge",
    "ChannelBrowser",
    "ChannelPageAgent",
    "parse_intent_simple",
    "Intent",
    "Outcome",
    "Session",
    "SessionState",
    "PurchaseOrchestrator",
]
