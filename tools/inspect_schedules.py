import os
import sys
import sqlite3

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
sys.path.insert(0, BASE_DIR)
from app import DB_PATH
from tracking.errors import ValidationError
from tracking.schedule import DAY_NAMES, parse_schedule

conn = sqlite3.connect(DB_PATH)
conn.row_factory = sqlite3.Row
c = conn.cursor()

print('DB:', DB_PATH)
students = c.execute('SELECT * FROM students ORDER BY id').fetchall()
print('Students:', len(students))
for row in students:
    name = f"{row['first_name']} {row['last_name']}"
    try:
        slots = parse_schedule(row['fixed_schedule'], row['course_id'])
    except ValidationError as exc:
        print(f"  [{row['id']}] {name}: INVALID schedule ({exc})")
        continue
    if not row['start_date']:
        print(f"  [{row['id']}] {name}: no start date")
    for slot in slots:
        print(f"  [{row['id']}] {name}: {DAY_NAMES[slot.day_of_week]} {slot.start_time}-{slot.end_time}")

dups = c.execute('''
    SELECT student_id, date, start_time, COUNT(*) AS cnt
    FROM classes
    GROUP BY student_id, date, start_time
    HAVING COUNT(*) > 1
''').fetchall()
print('Duplicate classes:', len(dups))
for r in dups[:10]:
    print(dict(r))

conn.close()
