"""
PayHub Kernel - payment approval workflow engine.

A sequential, multi-stage approval process attached to payments with:
- Template resolution by invoice type, contractor type and project
- Atomic stage progression and rejection
- Append-only approval progress log
- Role, user and project-scoped visibility
"""

__version__ = "0.1.0"
