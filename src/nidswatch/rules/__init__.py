"""
Rule audit trail.

Rule mutations with field-level diffs and change notifications.
"""

from nidswatch.rules.audit import RuleAuditEngine, compute_diff, rule_image

__all__ = ["RuleAuditEngine", "compute_diff", "rule_image"]
