"""
List SLA records whose deadline has passed and that were never evaluated.

Usage:
    python scripts/sla_overdue_report.py
    python scripts/sla_overdue_report.py --document-type job_order --env production

Exit code 2 when anything is overdue, so cron / CI can alert on it.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scm_workflow import create_app
from scm_workflow.services.clock import SystemClock, as_utc
from scm_workflow.services.sla_service import SlaTracker


def main():
    parser = argparse.ArgumentParser(description="Report overdue SLA records")
    parser.add_argument("--env", default="development", help="App environment")
    parser.add_argument("--document-type", default=None)
    args = parser.parse_args()

    app = create_app(args.env)
    with app.app_context():
        clock = SystemClock()
        tracker = SlaTracker(clock)
        overdue = tracker.list_overdue(args.document_type)
        now = clock.now()

        for rec in overdue:
            late = now - as_utc(rec.due_date)
            paused = " (paused)" if rec.paused else ""
            print(f"  {rec.document_type:22s} #{rec.document_id:<6d} {rec.kind:18s} "
                  f"due {as_utc(rec.due_date):%Y-%m-%d %H:%M} late {late}{paused}")
        print(f"\n  Overdue: {len(overdue)}")

    if overdue:
        sys.exit(2)


if __name__ == "__main__":
    main()
