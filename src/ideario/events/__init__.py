"""Ideario event system."""

from ideario.events.bus import EventBus
from ideario.events.types import EventType

__all__ = ["EventBus", "EventType"]
