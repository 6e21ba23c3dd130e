"""
RunForge Executor

Philosophy: controlled execution of a Plan.
- Tasks run strictly in declared order within a phase
- Failed phases are replanned and retried a bounded number of times
- File edits are atomic (all or nothing, with rollback)
- High-risk commands wait for approval

Architecture:
    Planner → Plan
        ↓
    Executor → per phase: tasks → tool adapters
        ↓                     ├─ TerminalTool (RiskGate)
        ↓                     └─ MultiFileEditTransaction (FileTransaction)
    on failure → Planner.replan_phase → retry
"""

from .context_provider import ContextFile, TokenBudgetSelector, WorkspaceSearch, estimate_tokens
from .executor import Executor
from .multi_file import MultiFileEditTransaction, TransactionResult, unified_diff
from .tools import TerminalTool
from .transaction import FileTransaction, TransactionState

__all__ = [
    # Plan execution
    "Executor",

    # Tools
    "TerminalTool",

    # File edits
    "MultiFileEditTransaction",
    "TransactionResult",
    "FileTransaction",
    "TransactionState",
    "unified_diff",

    # Context selection
    "ContextFile",
    "WorkspaceSearch",
    "TokenBudgetSelector",
    "estimate_tokens",
]

__version__ = "1.0.0"
