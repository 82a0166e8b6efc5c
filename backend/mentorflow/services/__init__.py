"""MentorFlow Services"""

from .tier_registry import TierRegistryService, tier_registry
from .usage_validator import validate, format_validation_messages
from .job_registry import JobRegistry
from .poll_driver import PollDriver
from .event_listener import EventListener
from .result_materializer import ResultMaterializer
from .reconciler import Reconciler
from .generation_tracker import GenerationTracker

__all__ = [
    "TierRegistryService",
    "tier_registry",
    "validate",
    "format_validation_messages",
    "JobRegistry",
    "PollDriver",
    "EventListener",
    "ResultMaterializer",
    "Reconciler",
    "GenerationTracker",
]
