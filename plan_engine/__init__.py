"""Plan Engine: transactional plan and task lifecycle storage for agent sessions."""

__version__ = "0.1.0"
