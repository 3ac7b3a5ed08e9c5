"""Study session timer with pomodoro-style cycling and study statistics."""

__version__ = "0.1.0"
