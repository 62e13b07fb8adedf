from maestro.capabilities.base import Capability, CapabilityRegistry, StepResult
from maestro.capabilities.command import CommandCapability
from maestro.capabilities.confirm import ConfirmCapability

__all__ = [
    "Capability",
    "CapabilityRegistry",
    "CommandCapability",
    "ConfirmCapability",
    "StepResult",
]
