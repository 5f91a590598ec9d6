"""Stage-gate workflows."""
