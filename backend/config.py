"""Shared configuration for the sales sync orchestrator backend.

This module centralizes environment variable access and default values
to prevent drift between modules.
"""

import os

# Database configuration
DB_PATH = os.getenv("DB_PATH", "./data/orchestrator.db")

# Task cadences (minutes). Schedules are aligned to multiples of the period.
SALES_SYNC_INTERVAL_MINUTES = int(os.getenv("SALES_SYNC_INTERVAL_MINUTES", "5"))
REGISTRATION_SYNC_INTERVAL_MINUTES = int(
    os.getenv("REGISTRATION_SYNC_INTERVAL_MINUTES", "1")
)

# Consecutive sales-run failures before the orchestrator stops itself
MAX_CONSECUTIVE_ERRORS = int(os.getenv("MAX_CONSECUTIVE_ERRORS", "5"))

# Unposted registrations fetched per registration run
REGISTRATION_BATCH_SIZE = int(os.getenv("REGISTRATION_BATCH_SIZE", "10"))

# Upper bound for each collaborator call; 0 disables the timeout
COLLABORATOR_TIMEOUT_SECONDS = float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "120"))

# Key under which the enabled flag is persisted
ORCHESTRATOR_STATE_KEY = os.getenv("ORCHESTRATOR_STATE_KEY", "scheduler_enabled")

# Initial value of the global auto-posting kill-switch
AUTO_POSTING_ENABLED = os.getenv("AUTO_POSTING_ENABLED", "true").lower() == "true"

# Import paths ("package.module:callable") of zero-argument factories that
# build the upstream sales client and the posting pipeline
SOURCE_PROCESSOR_FACTORY = os.getenv("SOURCE_PROCESSOR_FACTORY", "")
POSTING_PIPELINE_FACTORY = os.getenv("POSTING_PIPELINE_FACTORY", "")
