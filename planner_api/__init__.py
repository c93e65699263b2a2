"""Planner API - REST and websocket surface over the reminder dispatcher."""
