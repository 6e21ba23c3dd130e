"""
RunForge Governance Package

Decides whether a tool invocation may proceed.

Components:
- risk_rules: RiskClassifier (YAML-configurable command/URL patterns)
- risk_gate: RiskGateService (async approval checkpoint for high-risk actions)
- path_utils: workspace path canonicalisation

Philosophy:
- Classification is static text matching; nothing is executed
- Only high risk waits for a human; timeouts deny
"""

from .path_utils import (
    CanonicalPathResult,
    PathViolation,
    PathViolationError,
    canonicalize_path,
    is_within,
    resolve_workspace_path,
)
from .risk_gate import PendingApproval, RiskGateService
from .risk_rules import DEFAULT_RULES_PATH, RiskClassifier, load_risk_rules

__all__ = [
    # Risk
    "RiskClassifier",
    "RiskGateService",
    "PendingApproval",
    "load_risk_rules",
    "DEFAULT_RULES_PATH",

    # Path security
    "PathViolation",
    "PathViolationError",
    "CanonicalPathResult",
    "canonicalize_path",
    "resolve_workspace_path",
    "is_within",
]

__version__ = "1.0.0"
