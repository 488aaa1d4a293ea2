from .policy import SelectionPolicy
from .provider import SelectionPolicyProvider
from .selector import SelectionResult, VacationMemberSelector
from .telemetry import SelectionTelemetry
from .values import SelectionThresholds, ValueFactory

__all__ = [
    "SelectionPolicy",
    "SelectionPolicyProvider",
    "SelectionResult",
    "SelectionTelemetry",
    "SelectionThresholds",
    "ValueFactory",
    "VacationMemberSelector",
]
