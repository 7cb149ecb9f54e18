"""
Constants for the Bakehouse costing engine.

This module defines all system-wide constants including:
- Application metadata
- Baker's percentage basis and decimal precision
- Snapshot schema version
- Costing and posting defaults
"""

from decimal import Decimal
from typing import List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Bakehouse Costing"
APP_VERSION = "0.1.0"
DATABASE_VERSION = "1.0"

# ============================================================================
# Baker's Percentages
# ============================================================================

# Ratio points that correspond to the full flour weight of a component
BAKERS_PERCENT_BASIS = Decimal("100")

# ============================================================================
# Decimal Precision
# ============================================================================

WEIGHT_QUANTUM = Decimal("0.0001")  # grams
COST_QUANTUM = Decimal("0.0001")  # money

# ============================================================================
# Costing Defaults
# ============================================================================

DEFAULT_CONSUMPTION_EPSILON_GRAMS = Decimal("0.01")
DEFAULT_COST_BREAKDOWN_TOP_N = 4
DEFAULT_COST_HISTORY_POINTS = 10

# Label of the synthetic bucket that collects the breakdown tail
OTHER_BUCKET_NAME = "Other"

# ============================================================================
# Recipe Snapshots
# ============================================================================

# Bump when the serialized snapshot shape changes; add a migration step in
# recipe_snapshot_service for the previous version.
SNAPSHOT_SCHEMA_VERSION = 2

# ============================================================================
# Production Tasks
# ============================================================================

# Statuses whose tasks still count toward the bill of materials
ACTIVE_TASK_STATUSES: List[str] = ["PENDING", "IN_PROGRESS"]

PROCESS_LOSS_REASON = "Process loss for production task {task_id}"
SPOILAGE_REASON = "Spoilage for production task {task_id} ({stage})"

# ============================================================================
# Database
# ============================================================================

DATABASE_FILENAME = "bakehouse.db"
