"""
Retention early-warning engine for fitness boxes.

Converts per-member activity signals into risk scores, decides when a
coach should be alerted, escalates alerts left unaddressed and measures
whether interventions worked.

For CLI usage:
    retention-db init           # Create tables
    retention-jobs daily        # Scores, alerts and escalations for every box
    retention-jobs weekly       # Intervention outcomes for every box
"""

# Configuration
from .config import (
    DEFAULT_ENGINE_CONFIG,
    AlertStatus,
    AlertType,
    Effectiveness,
    EngineConfig,
    RiskLevel,
    get_settings,
)

# Errors
from .errors import (
    ConfigurationError,
    ConflictOnUnique,
    InvalidEscalation,
    NotFound,
    RetentionError,
    TransientStoreError,
)

# Components
from .data.store import RetentionStore
from .early_warning import Alert, AlertGenerator, generate_alert
from .escalation import EscalationAnalyzer, EscalationEngine
from .outcomes import InterventionOutcome, OutcomeTracker
from .scoring import RiskScore, RiskScoreCalculator

__version__ = "0.1.0"

__all__ = [
    # Config
    "DEFAULT_ENGINE_CONFIG",
    "AlertStatus",
    "AlertType",
    "Effectiveness",
    "EngineConfig",
    "RiskLevel",
    "get_settings",
    # Errors
    "ConfigurationError",
    "ConflictOnUnique",
    "InvalidEscalation",
    "NotFound",
    "RetentionError",
    "TransientStoreError",
    # Components
    "Alert",
    "AlertGenerator",
    "EscalationAnalyzer",
    "EscalationEngine",
    "InterventionOutcome",
    "OutcomeTracker",
    "RetentionStore",
    "RiskScore",
    "RiskScoreCalculator",
    "generate_alert",
]
