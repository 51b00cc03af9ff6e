"""
Early warning: turning risk scores into coach alerts.

Usage:
    from retention.early_warning import AlertGenerator, generate_alert

    alert = generate_alert(risk_score)            # pure decision
    summary = AlertGenerator(store).process_box("box-1")
"""

from .alerts import CATEGORY_RULES, Alert, CategoryRule, determine_category, generate_alert
from .generator import AlertGenerator, assign_coach
from .triggers import TriggerBase, TriggerData, build_trigger_data, parse_trigger_data

__all__ = [
    "CATEGORY_RULES",
    "Alert",
    "AlertGenerator",
    "CategoryRule",
    "TriggerBase",
    "TriggerData",
    "assign_coach",
    "build_trigger_data",
    "determine_category",
    "generate_alert",
    "parse_trigger_data",
]
