"""
Seed the default approval ladder and report range problems.

Usage:
    python scripts/seed_approval_rules.py                         # development DB, job_order
    python scripts/seed_approval_rules.py --env production
    python scripts/seed_approval_rules.py --document-type job_order --check-only

Idempotent: an existing ladder is left untouched.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scm_workflow import create_app
from scm_workflow.models import db
from scm_workflow.models.workflow import ApprovalWorkflowRule, seed_default_approval_rules
from scm_workflow.services.approval_service import validate_rules


def main():
    parser = argparse.ArgumentParser(description="Seed approval rules and validate their amount ranges")
    parser.add_argument("--env", default="development", help="App environment")
    parser.add_argument("--document-type", default="job_order")
    parser.add_argument("--check-only", action="store_true", help="Only report gaps and overlaps")
    args = parser.parse_args()

    app = create_app(args.env)
    with app.app_context():
        if not args.check_only:
            created = seed_default_approval_rules(args.document_type)
            db.session.commit()
            print(f"  Rules created: {len(created)}")

        rules = (
            ApprovalWorkflowRule.query
            .filter_by(document_type=args.document_type)
            .order_by(ApprovalWorkflowRule.min_amount)
            .all()
        )
        for rule in rules:
            upper = "inf" if rule.max_amount is None else f"{rule.max_amount:,.0f}"
            print(f"  L{rule.level} [{rule.min_amount:,.0f}, {upper}) -> {rule.approver_role:24s} {rule.sla_hours:g}h")

        problems = validate_rules(args.document_type)
        if problems:
            print("\nRange problems:")
            for p in problems:
                print(f"  - {p}")
            sys.exit(1)
        print("\nRanges OK")


if __name__ == "__main__":
    main()
