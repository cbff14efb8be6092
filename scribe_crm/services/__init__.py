"""Workflow, suggestion and chat services."""
