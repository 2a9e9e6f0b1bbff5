"""Agent prompt migration.

Splits a monolithic agent prompt into intro, workflow, examples, critical
requirements and critical reminders documents, and derives the agent's
configuration record from its declared role and domain.
"""

__version__ = "1.0.0"
