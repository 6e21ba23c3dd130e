"""
Risk Rules - static text-pattern classification of tool invocations

Rules are loaded from policies/risk_rules.yaml (or an injected path):
- high / medium: `starts_with` and `contains` command patterns
- low_risk_hosts: URL hosts that are always low risk
- allowed_commands: base commands the terminal adapter may run

Classification never executes anything; it only reads the invocation text.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import yaml

from protocol.risk import RiskInvocation, RiskLevel

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).parent / "policies" / "risk_rules.yaml"

_GATED_LEVELS = (RiskLevel.HIGH, RiskLevel.MEDIUM)


def load_risk_rules(rules_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load risk rules YAML. Missing sections default to empty."""
    path = Path(rules_path) if rules_path is not None else DEFAULT_RULES_PATH
    if not path.exists():
        raise FileNotFoundError(f"Risk rules not found: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Risk rules file {path} must contain a mapping")
    return data


class RiskClassifier:
    """Classifies commands and URLs as low / medium / high."""

    def __init__(self, rules: Optional[Dict[str, Any]] = None):
        if rules is None:
            rules = load_risk_rules()
        self.rules = rules
        self._patterns: Dict[RiskLevel, Dict[str, List[str]]] = {}
        for level in _GATED_LEVELS:
            section = rules.get(level.value) or {}
            self._patterns[level] = {
                "starts_with": [p.lower().strip() for p in section.get("starts_with", [])],
                "contains": [p.lower().strip() for p in section.get("contains", [])],
            }
        self.low_risk_hosts = {h.lower() for h in rules.get("low_risk_hosts", [])}
        self.allowed_commands = list(rules.get("allowed_commands", []))

    @classmethod
    def from_file(cls, rules_path: Optional[Path] = None) -> "RiskClassifier":
        return cls(load_risk_rules(rules_path))

    def classify(self, invocation: RiskInvocation) -> RiskLevel:
        if invocation.command:
            return self.classify_command(invocation.command)
        return self.classify_url(invocation.url or "")

    def classify_command(self, command: str) -> RiskLevel:
        lower = " ".join(command.lower().split())
        padded = f" {lower} "
        for level in _GATED_LEVELS:
            patterns = self._patterns[level]
            if any(lower.startswith(p) for p in patterns["starts_with"]):
                return level
            if any(f" {p} " in padded for p in patterns["contains"]):
                return level
        return RiskLevel.LOW

    def classify_url(self, url: str) -> RiskLevel:
        host = (urlsplit(url).hostname or "").lower()
        if host in self.low_risk_hosts:
            return RiskLevel.LOW
        return RiskLevel.MEDIUM

    def is_allowed_command(self, base_command: str) -> bool:
        return base_command in self.allowed_commands
