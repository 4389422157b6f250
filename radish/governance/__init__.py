"""
Radish Governance — Policy + Violation Detection
"""

from radish.governance.detector import (
    SECRET_PATTERNS,
    DetectionResult,
    Violation,
    ViolationDetector,
    ViolationKind,
)
from radish.governance.policy import OnViolation, Policy, glob_matches, validate_glob

__all__ = [
    "SECRET_PATTERNS",
    "DetectionResult",
    "OnViolation",
    "Policy",
    "Violation",
    "ViolationDetector",
    "ViolationKind",
    "glob_matches",
    "validate_glob",
]
