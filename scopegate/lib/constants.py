"""Shared constants for scopegate."""

import re

# Record IDs
TASK_ID_PATTERN = re.compile(r'^(\d{3})-([a-z0-9][a-z0-9-]*)$')
CHAIN_ID_PATTERN = re.compile(r'^CHAIN-(\d{3})-([a-z0-9][a-z0-9-]*)$')
REQUEST_ID_PATTERN = re.compile(r'^(CR|FR)-(\d{8})-(\d{3})$')
WORKFLOW_ID_PATTERN = re.compile(r'^WF-(\d{8})-(\d{3})$')
SLUG_PATTERN = re.compile(r'^[a-z0-9][a-z0-9-]*$')

# Project files
CONFIG_FILE = "scopegate.env"
DEFAULT_STATE_DIR = ".scopegate"
DEFAULT_GOVERNANCE_FILE = "scopegate.governance.yaml"
DEFAULT_HANDOFF_FILE = "scopegate.handoff.yaml"

# Timeouts
DEFAULT_LOCK_EXPIRATION_MINUTES = 120
DEFAULT_VERIFY_TIMEOUT = 300
DEFAULT_RECORD_LOCK_TIMEOUT = 10

# Roles
ROLES = ("impl", "control")
MUTATION_ACTIONS = ("create", "modify", "move", "delete")
