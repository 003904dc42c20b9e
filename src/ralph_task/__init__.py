"""ralph-task: keep PRD user stories and Trello cards in sync."""

__version__ = "0.1.0"
