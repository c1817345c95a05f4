from .gate import evaluate, filter_from_settings, trigger_from_env
from .models import EventKind, GateDecision, TriggerEvent, TriggerFilter

__all__ = [
    "EventKind",
    "GateDecision",
    "TriggerEvent",
    "TriggerFilter",
    "evaluate",
    "filter_from_settings",
    "trigger_from_env",
]
