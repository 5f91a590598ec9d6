"""Checks run before a task is handed from one worker to another."""
