"""Shared constants: file names, wire sentinels, and display limits."""

from __future__ import annotations

CONFIG_FILE_NAME = ".beadhub"
CACHE_DIR_NAME = ".beadhub-cache"
SYNC_STATE_FILE_NAME = "sync-state.json"
BEADS_DIR_NAME = ".beads"
ISSUES_FILE_NAME = "issues.jsonl"

# Metadata reason stamped on reservations managed from working-tree status.
AUTO_RESERVE_REASON = "auto-reserve"

# Bumping this invalidates stored sync hashes and forces a full upload.
HASH_VERSION = "v1"

MAX_RESPONSE_BYTES = 10 * 1024 * 1024

READY_TEAM_LIMIT = 15
READY_TEAM_QUERY_OVERFLOW = 1
READY_LOCKS_LIMIT = 10
TEAM_ACTIVITY_THRESHOLD_HOURS = 6
STALE_CLAIM_THRESHOLD_HOURS = 24
