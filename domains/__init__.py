"""Domain modules for the Planner service."""
