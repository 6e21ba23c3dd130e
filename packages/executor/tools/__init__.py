from .terminal import TerminalTool

__all__ = ["TerminalTool"]
