"""AgentTeam dispatch orchestrator.

A dispatcher that delegates tasks to a roster of specialist agents defined by
Markdown files, launching each task as an isolated child session and tracking
its progress (loader, team manager, model capability checker, dispatch engine).
"""

__version__ = "0.1.0"
