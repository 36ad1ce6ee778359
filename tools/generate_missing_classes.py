"""Create the classes implied by fixed schedules that are not on record yet."""

import os
import sys
import argparse

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
sys.path.insert(0, BASE_DIR)
import app
from tracking.materialize import materialize


def generate(student_id=None, dry_run=False):
    """Create missing recurring classes up to today for one or all students."""
    conn = app.get_db()
    c = conn.cursor()
    now = app.today()
    if student_id is None:
        rows = c.execute('SELECT * FROM students ORDER BY id').fetchall()
    else:
        rows = c.execute('SELECT * FROM students WHERE id=?', (student_id,)).fetchall()
    created = 0
    for row in rows:
        comparison = app._compare_row(c, row, None, now)
        if comparison.status != 'success':
            print(f"{comparison.student_name}: {comparison.status} ({comparison.reason})")
            continue
        missing = comparison.result.missing
        if dry_run:
            print(f"{comparison.student_name}: {len(missing)} missing")
            continue
        report = materialize(conn, missing)
        created += report.created
        print(
            f"{comparison.student_name}: {report.created} created, "
            f"{report.skipped} skipped, {len(report.errors)} errors"
        )
    conn.close()
    if not dry_run:
        print(f"Created {created} class(es).")
    return created


def generate_week():
    """Create this Monday..Sunday week's classes for every student."""
    conn = app.get_db()
    summary = app.generate_week(conn, app.today())
    conn.close()
    for entry in summary['results']:
        print(f"{entry['studentName']}: {entry['status']}, {entry['classesCreated']} created")
    print(
        f"Week {summary['weekStart']}..{summary['weekEnd']}: "
        f"created {summary['totalClassesCreated']} class(es)."
    )
    return summary['totalClassesCreated']


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('--student', type=int, help='only this student id')
    parser.add_argument('--dry-run', action='store_true', help='report without writing')
    parser.add_argument('--week', action='store_true', help='fill in the current week only (cron entry point)')
    args = parser.parse_args()
    app.init_db()
    if args.week:
        generate_week()
    else:
        generate(args.student, args.dry_run)
