"""Conversational agent runtime: thread event log, agent turn loop, tool gate."""

__version__ = "0.1.0"
