"""sleepsteps: synthetic sleep and step data planner and injector."""

__version__ = "0.1.0"
