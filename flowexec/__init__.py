"""
FlowExec - A resumable, observable workflow execution engine.

Runs declarative workflow graphs (start, end, agent, tool, decision,
human checkpoint and transform nodes) as long-lived execution instances
with loops, branching, human approval and live progress streaming.
"""

__version__ = "1.0.0"
