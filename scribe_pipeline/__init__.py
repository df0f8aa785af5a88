"""Scribe Pipeline - Core modules.

Turns finished lesson recordings into a transcript, a summary and a title:
- store / registry: durable Record Store and Task Registry (SQLite)
- stages / submitter: stage preconditions and task submission
- completion / reconciler: event handling and startup repair
- pipeline: the PipelineService tying them together
"""

__version__ = "0.1.0"
