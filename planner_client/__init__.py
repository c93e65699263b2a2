"""Planner client - local notification mirror fed from the Planner API."""
