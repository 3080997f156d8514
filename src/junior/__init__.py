"""junior: run a coding agent in a loop until the Beads backlog is done."""

__version__ = "0.1.0"
