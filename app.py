"""Flask JSON API for a private tutor's students, courses and classes.

This file contains the web routes and the database access logic.  Data is
stored in a local SQLite database which is initialized with a few sample
rows on first run.  The interesting part, comparing each student's weekly
fixed schedule with the classes actually on record, lives in the
``tracking`` package; the routes here load rows, hand them to it and save
whatever comes back.

Every response is JSON.  Errors are reported as ``{"error": "..."}`` with an
HTTP status: 400 for invalid input, 404 for unknown ids, 409 for conflicts
such as a duplicate class and 500 for database failures.
"""

from flask import Flask, request, jsonify, session
import sqlite3
import json
import os
import logging
from datetime import date, datetime, timedelta
from werkzeug.exceptions import HTTPException

from tracking.calendar import GhostSlot, find_occupant, hidden_key, week_dates, week_view
from tracking.errors import DuplicateClassError, ValidationError
from tracking.expansion import expand_schedule
from tracking.hidden import HiddenScheduleCache
from tracking.materialize import insert_class, materialize, price_instance
from tracking.models import CLASS_STATUSES, PAYMENT_STATUSES, CalendarInstance, Student
from tracking.reconcile import StudentComparison, aggregate, compare_student
from tracking.reports import (
    REPORT_FIELDS,
    TRACKING_FIELDS,
    aggregate_month,
    dashboard_stats,
    month_bounds,
    student_month_stats,
)
from tracking.schedule import (
    dump_schedule,
    normalize_day_of_week,
    normalize_time,
    parse_date,
    parse_month,
    parse_schedule,
)

app = Flask(__name__)
app.secret_key = os.environ.get('TUTOR_TRACKER_SECRET', 'dev')

# Store the SQLite database inside a dedicated ``data`` directory so the
# application files can stay read-only when deployed.
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.path.join(BASE_DIR, "data")
os.makedirs(DATA_DIR, exist_ok=True)
DB_PATH = os.environ.get('TUTOR_TRACKER_DB') or os.path.join(DATA_DIR, "tutor_tracker.db")

DEFAULT_SETTINGS = {
    'teacher_name': '',
    'default_duration': 60,
    'generation_horizon_days': 90,
    'email_reminders': 0,
    'whatsapp_reminders': 0,
    'reminder_advance_hours': 24,
    'hidden_ttl_days': 60,
}

STUDENT_FIELDS = [
    'first_name', 'last_name', 'email', 'phone', 'parent_phone',
    'student_code', 'course_id', 'start_date', 'has_shared_pricing',
]

COURSE_FIELDS = [
    'name', 'description', 'subject', 'price', 'shared_class_price',
    'duration', 'color', 'is_active',
]


def today():
    """Return the current date.  Tests replace this to pin "today"."""
    return date.today()


def get_db():
    """Return a connection to the SQLite database.

    Every view function calls this helper to obtain a connection. Setting
    ``row_factory`` lets rows behave like dictionaries.
    """
    dir_ = os.path.dirname(DB_PATH)
    if dir_:
        os.makedirs(dir_, exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    """Create the SQLite tables and populate default rows.

    Also performs simple migrations when columns were added in later
    versions.  Called on start-up and by the tests."""
    # ``get_db`` creates the file if needed, so check for it beforehand to
    # tell a brand new database from an existing one.
    db_exists = os.path.exists(DB_PATH)
    conn = get_db()
    c = conn.cursor()

    def table_exists(name):
        c.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,))
        return c.fetchone() is not None

    def column_exists(table, column):
        c.execute(f"PRAGMA table_info({table})")
        return column in [row[1] for row in c.fetchall()]

    if not table_exists('config'):
        c.execute('''CREATE TABLE config (
            id INTEGER PRIMARY KEY,
            teacher_name TEXT,
            default_duration INTEGER DEFAULT 60,
            generation_horizon_days INTEGER DEFAULT 90,
            email_reminders INTEGER DEFAULT 0,
            whatsapp_reminders INTEGER DEFAULT 0,
            reminder_advance_hours INTEGER DEFAULT 24,
            hidden_ttl_days INTEGER DEFAULT 60
        )''')
    else:
        for column, default in DEFAULT_SETTINGS.items():
            if column_exists('config', column):
                continue
            if column == 'teacher_name':
                c.execute('ALTER TABLE config ADD COLUMN teacher_name TEXT')
            else:
                c.execute(f'ALTER TABLE config ADD COLUMN {column} INTEGER DEFAULT {default}')

    if not table_exists('courses'):
        c.execute('''CREATE TABLE courses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            subject TEXT,
            price REAL NOT NULL,
            shared_class_price REAL,
            duration INTEGER NOT NULL,
            color TEXT,
            is_active INTEGER DEFAULT 1,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )''')
    else:
        if not column_exists('courses', 'shared_class_price'):
            c.execute('ALTER TABLE courses ADD COLUMN shared_class_price REAL')

    if not table_exists('students'):
        c.execute('''CREATE TABLE students (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            email TEXT,
            phone TEXT,
            parent_phone TEXT,
            student_code TEXT UNIQUE,
            course_id INTEGER,
            start_date TEXT,
            fixed_schedule TEXT,
            has_shared_pricing INTEGER DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )''')
    else:
        if not column_exists('students', 'start_date'):
            c.execute('ALTER TABLE students ADD COLUMN start_date TEXT')
        if not column_exists('students', 'has_shared_pricing'):
            c.execute('ALTER TABLE students ADD COLUMN has_shared_pricing INTEGER DEFAULT 0')

    if not table_exists('classes'):
        c.execute('''CREATE TABLE classes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            student_id INTEGER NOT NULL,
            course_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            duration INTEGER,
            day_of_week INTEGER,
            is_recurring INTEGER DEFAULT 0,
            status TEXT DEFAULT 'scheduled',
            payment_status TEXT DEFAULT 'unpaid',
            payment_date TEXT,
            payment_notes TEXT,
            price REAL,
            subject TEXT,
            notes TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )''')
    else:
        if not column_exists('classes', 'payment_date'):
            c.execute('ALTER TABLE classes ADD COLUMN payment_date TEXT')
        if not column_exists('classes', 'payment_notes'):
            c.execute('ALTER TABLE classes ADD COLUMN payment_notes TEXT')
        # Older databases allowed duplicates; keep the first row per slot so
        # the unique index below can be created.
        c.execute(
            '''DELETE FROM classes WHERE rowid NOT IN (
                   SELECT MIN(rowid) FROM classes
                   GROUP BY student_id, date, start_time
               )'''
        )
        if c.rowcount:
            logging.warning('Removed %d duplicate classes during migration', c.rowcount)
    c.execute(
        'CREATE UNIQUE INDEX IF NOT EXISTS idx_classes_student_slot '
        'ON classes(student_id, date, start_time)'
    )

    if not table_exists('exams'):
        c.execute('''CREATE TABLE exams (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            student_id INTEGER NOT NULL,
            subject TEXT NOT NULL,
            exam_date TEXT NOT NULL,
            exam_time TEXT,
            notes TEXT,
            grade REAL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )''')

    if not table_exists('class_tracking'):
        columns = ',\n'.join(f'{name} REAL DEFAULT 0' for name in TRACKING_FIELDS)
        c.execute(f'''CREATE TABLE class_tracking (
            student_id INTEGER NOT NULL,
            course_id INTEGER,
            month_year TEXT NOT NULL,
            {columns},
            updated_at TEXT,
            PRIMARY KEY (student_id, month_year)
        )''')

    if not table_exists('monthly_reports'):
        columns = ',\n'.join(f'{name} REAL DEFAULT 0' for name in REPORT_FIELDS)
        c.execute(f'''CREATE TABLE monthly_reports (
            month_year TEXT PRIMARY KEY,
            {columns},
            updated_at TEXT
        )''')

    conn.commit()

    # Only insert sample data when creating a brand new database file.  If the
    # file already exists, assume any empty tables were intentionally cleared.
    if not db_exists:
        c.execute(
            'INSERT INTO config (id, teacher_name, default_duration, generation_horizon_days, '
            'email_reminders, whatsapp_reminders, reminder_advance_hours, hidden_ttl_days) '
            'VALUES (1, ?, 60, 90, 0, 0, 24, 60)',
            ('Tutor',),
        )
        courses = [
            ('Mathematics', 'Secondary school maths', 'Math', 20.0, 15.0, 60, '#3b82f6'),
            ('Physics', 'Secondary school physics', 'Physics', 25.0, None, 60, '#10b981'),
        ]
        c.executemany(
            'INSERT INTO courses (name, description, subject, price, shared_class_price, duration, color) '
            'VALUES (?, ?, ?, ?, ?, ?, ?)',
            courses,
        )
        c.execute("SELECT id FROM courses WHERE name='Mathematics'")
        math_id = c.fetchone()['id']
        schedule = json.dumps([
            {'day_of_week': 1, 'start_time': '16:00', 'end_time': '17:00',
             'subject': 'Math', 'course_id': math_id},
        ])
        students = [
            ('Ana', 'Garcia', 'ana@example.com', 'S001', math_id, '2024-01-01', schedule),
            ('Luis', 'Martin', 'luis@example.com', 'S002', math_id, None, None),
        ]
        c.executemany(
            'INSERT INTO students (first_name, last_name, email, student_code, course_id, '
            'start_date, fixed_schedule) VALUES (?, ?, ?, ?, ?, ?, ?)',
            students,
        )
    conn.commit()
    conn.close()


# --- Error handling ---

@app.errorhandler(ValidationError)
def handle_validation_error(exc):
    return jsonify({'error': str(exc)}), 400


@app.errorhandler(DuplicateClassError)
def handle_duplicate_class(exc):
    return jsonify({
        'error': 'A class is already scheduled for this student on the same date and start time.',
        'details': str(exc),
    }), 409


@app.errorhandler(sqlite3.Error)
def handle_db_error(exc):
    app.logger.exception('Database error')
    return jsonify({'error': 'Database error', 'details': str(exc)}), 500


@app.errorhandler(HTTPException)
def handle_http_error(exc):
    return jsonify({'error': exc.description}), exc.code


def _error(message, status):
    return jsonify({'error': message}), status


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object.')
    return data


def _int_arg(value, name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer.') from None


def _ids_arg(raw):
    if isinstance(raw, str):
        raw = [part for part in raw.split(',') if part.strip()]
    if not isinstance(raw, list) or not raw:
        raise ValidationError('ids must be a non-empty list of class ids.')
    return [_int_arg(part, 'ids') for part in raw]


# --- Settings ---

def get_settings(c):
    row = c.execute('SELECT * FROM config WHERE id=1').fetchone()
    settings = dict(DEFAULT_SETTINGS)
    if row is not None:
        for key in DEFAULT_SETTINGS:
            if row[key] is not None:
                settings[key] = row[key]
    return settings


def _validate_settings(data):
    cleaned = {}
    for key, value in data.items():
        if key not in DEFAULT_SETTINGS:
            raise ValidationError(f'Unknown setting: {key}')
        if key == 'teacher_name':
            cleaned[key] = str(value or '').strip()
        elif key in ('email_reminders', 'whatsapp_reminders'):
            cleaned[key] = 1 if value else 0
        else:
            number = _int_arg(value, key)
            if number < 0:
                raise ValidationError(f'{key} cannot be negative.')
            if key == 'default_duration' and number == 0:
                raise ValidationError('default_duration must be greater than zero.')
            cleaned[key] = number
    return cleaned


@app.route('/api/settings', methods=['GET'])
def read_settings():
    conn = get_db()
    settings = get_settings(conn.cursor())
    conn.close()
    return jsonify(settings)


@app.route('/api/settings', methods=['PUT'])
def update_settings():
    cleaned = _validate_settings(_json_body())
    conn = get_db()
    c = conn.cursor()
    if c.execute('SELECT 1 FROM config WHERE id=1').fetchone() is None:
        c.execute('INSERT INTO config (id) VALUES (1)')
    for key, value in cleaned.items():
        c.execute(f'UPDATE config SET {key}=? WHERE id=1', (value,))
    conn.commit()
    settings = get_settings(c)
    conn.close()
    return jsonify(settings)


# --- Courses ---

def _course_dict(row):
    data = dict(row)
    data['is_active'] = bool(data['is_active'])
    return data


def _validate_course(data, partial=False):
    """Validate course fields and return the columns to write."""
    if not partial:
        missing = [name for name in ('name', 'price', 'duration') if data.get(name) in (None, '')]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    cleaned = {}
    for key in COURSE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key in ('price', 'shared_class_price'):
            if value in (None, '') and key == 'shared_class_price':
                cleaned[key] = None
                continue
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise ValidationError(f'{key} must be a number.') from None
            if value < 0:
                raise ValidationError(f'{key} cannot be negative.')
        elif key == 'duration':
            value = _int_arg(value, 'duration')
            if value <= 0:
                raise ValidationError('duration must be greater than zero.')
        elif key == 'is_active':
            value = 1 if value else 0
        elif key == 'name':
            value = str(value or '').strip()
            if not value:
                raise ValidationError('name cannot be empty.')
        cleaned[key] = value
    if not partial:
        cleaned.setdefault('color', '#3b82f6')
        cleaned.setdefault('is_active', 1)
    return cleaned


@app.route('/api/courses', methods=['GET'])
def list_courses():
    conn = get_db()
    rows = conn.execute('SELECT * FROM courses ORDER BY name').fetchall()
    conn.close()
    return jsonify([_course_dict(r) for r in rows])


@app.route('/api/courses', methods=['POST'])
def create_course():
    cleaned = _validate_course(_json_body())
    conn = get_db()
    c = conn.cursor()
    cols = ', '.join(cleaned)
    placeholders = ', '.join('?' for _ in cleaned)
    c.execute(f'INSERT INTO courses ({cols}) VALUES ({placeholders})', list(cleaned.values()))
    course_id = c.lastrowid
    conn.commit()
    conn.close()
    return jsonify({'id': course_id, 'message': 'Course created'}), 201


@app.route('/api/courses/<int:course_id>', methods=['GET'])
def get_course(course_id):
    conn = get_db()
    row = conn.execute('SELECT * FROM courses WHERE id=?', (course_id,)).fetchone()
    conn.close()
    if row is None:
        return _error('Course not found', 404)
    return jsonify(_course_dict(row))


@app.route('/api/courses/<int:course_id>', methods=['PUT'])
def update_course(course_id):
    """Edit a course.  Prices of classes already saved are not touched."""
    cleaned = _validate_course(_json_body(), partial=True)
    conn = get_db()
    c = conn.cursor()
    if c.execute('SELECT 1 FROM courses WHERE id=?', (course_id,)).fetchone() is None:
        conn.close()
        return _error('Course not found', 404)
    for key, value in cleaned.items():
        c.execute(f'UPDATE courses SET {key}=? WHERE id=?', (value, course_id))
    conn.commit()
    row = c.execute('SELECT * FROM courses WHERE id=?', (course_id,)).fetchone()
    conn.close()
    return jsonify(_course_dict(row))


@app.route('/api/courses/<int:course_id>', methods=['DELETE'])
def delete_course(course_id):
    conn = get_db()
    c = conn.cursor()
    if c.execute('SELECT 1 FROM courses WHERE id=?', (course_id,)).fetchone() is None:
        conn.close()
        return _error('Course not found', 404)
    in_use = c.execute(
        'SELECT COUNT(*) FROM students WHERE course_id=?', (course_id,)
    ).fetchone()[0]
    if in_use:
        conn.close()
        return _error(f'Course is assigned to {in_use} student(s).', 409)
    c.execute('DELETE FROM courses WHERE id=?', (course_id,))
    conn.commit()
    conn.close()
    return jsonify({'message': 'Course deleted'})


# --- Students ---

def _student_dict(row):
    data = dict(row)
    data['has_shared_pricing'] = bool(data['has_shared_pricing'])
    raw = data.pop('fixed_schedule')
    try:
        data['fixed_schedule'] = [s.to_dict() for s in parse_schedule(raw, row['course_id'])]
    except ValidationError:
        app.logger.warning('Student %s has an unreadable fixed schedule', row['id'])
        data['fixed_schedule'] = []
        data['schedule_error'] = 'Stored fixed schedule is invalid'
    return data


def _validate_student(c, data, partial=False):
    """Validate student fields and return the columns to write."""
    if not partial:
        required = ['first_name', 'last_name', 'course_id', 'student_code', 'start_date']
        missing = [name for name in required if data.get(name) in (None, '')]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    cleaned = {}
    for key in STUDENT_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == 'course_id':
            value = _int_arg(value, 'course_id')
            if c.execute('SELECT 1 FROM courses WHERE id=?', (value,)).fetchone() is None:
                raise ValidationError(f'Course {value} not found.')
        elif key == 'start_date':
            if value in (None, ''):
                value = None
            else:
                parsed = parse_date(value, 'start_date')
                if parsed > today():
                    raise ValidationError('start_date cannot be in the future.')
                value = parsed.isoformat()
        elif key == 'has_shared_pricing':
            value = 1 if value else 0
        elif key in ('first_name', 'last_name', 'student_code'):
            value = str(value or '').strip()
            if not value:
                raise ValidationError(f'{key} cannot be empty.')
        cleaned[key] = value
    return cleaned


def load_student(c, student_id):
    row = c.execute('SELECT * FROM students WHERE id=?', (student_id,)).fetchone()
    if row is None:
        return None
    return Student.from_row(row)


def load_classes(c, student_id=None, start=None, end=None, recurring=None):
    query = 'SELECT * FROM classes WHERE 1=1'
    params = []
    if student_id is not None:
        query += ' AND student_id=?'
        params.append(student_id)
    if start is not None:
        query += ' AND date>=?'
        params.append(start.isoformat())
    if end is not None:
        query += ' AND date<=?'
        params.append(end.isoformat())
    if recurring is not None:
        query += ' AND is_recurring=?'
        params.append(1 if recurring else 0)
    query += ' ORDER BY date, start_time'
    return [CalendarInstance.from_row(r) for r in c.execute(query, params).fetchall()]


def _generate_from_schedule(conn, student, start, end):
    """Materialize every expected class between ``start`` and ``end``."""
    expected = expand_schedule(
        student.id,
        student.schedule,
        student.start_date,
        end,
        range_start=start,
        default_course_id=student.course_id,
    )
    report = materialize(conn, expected)
    app.logger.info(
        'Generated classes for student %s: %d created, %d skipped, %d errors',
        student.id, report.created, report.skipped, len(report.errors),
    )
    return report


def _replace_schedule(conn, student_id, raw_schedule):
    """Store a new fixed schedule and rebuild the student's future classes.

    Past classes are left untouched.  Future recurring classes that are
    still scheduled and unpaid are removed and regenerated up to the
    configured horizon.
    """
    c = conn.cursor()
    row = c.execute('SELECT course_id FROM students WHERE id=?', (student_id,)).fetchone()
    slots = parse_schedule(raw_schedule, row['course_id'])
    c.execute(
        'UPDATE students SET fixed_schedule=? WHERE id=?',
        (dump_schedule(slots), student_id),
    )
    now = today()
    c.execute(
        "DELETE FROM classes WHERE student_id=? AND is_recurring=1 AND date>=? "
        "AND status='scheduled' AND payment_status='unpaid'",
        (student_id, now.isoformat()),
    )
    removed = c.rowcount
    conn.commit()
    student = load_student(c, student_id)
    created = 0
    if student.schedule and student.start_date is not None:
        horizon = get_settings(c)['generation_horizon_days']
        report = _generate_from_schedule(
            conn, student, max(now, student.start_date), now + timedelta(days=horizon)
        )
        created = report.created
    return slots, removed, created


@app.route('/api/students', methods=['GET'])
def list_students():
    conn = get_db()
    rows = conn.execute('SELECT * FROM students ORDER BY last_name, first_name').fetchall()
    conn.close()
    return jsonify([_student_dict(r) for r in rows])


@app.route('/api/students', methods=['POST'])
def create_student():
    """Create a student and backfill their classes up to today.

    When a fixed schedule is given, every class it implies from the start
    date until today is created straight away.
    """
    data = _json_body()
    conn = get_db()
    c = conn.cursor()
    try:
        cleaned = _validate_student(c, data)
        slots = parse_schedule(data.get('fixed_schedule'), cleaned['course_id'])
        cleaned['fixed_schedule'] = dump_schedule(slots)
        cols = ', '.join(cleaned)
        placeholders = ', '.join('?' for _ in cleaned)
        try:
            c.execute(f'INSERT INTO students ({cols}) VALUES ({placeholders})', list(cleaned.values()))
        except sqlite3.IntegrityError:
            return _error(f"student_code {cleaned['student_code']!r} is already in use.", 409)
        student_id = c.lastrowid
        conn.commit()
        created = 0
        student = load_student(c, student_id)
        if student.schedule:
            created = _generate_from_schedule(conn, student, student.start_date, today()).created
    finally:
        conn.close()
    return jsonify({'id': student_id, 'classesCreated': created, 'message': 'Student created'}), 201


@app.route('/api/students/<int:student_id>', methods=['GET'])
def get_student(student_id):
    conn = get_db()
    row = conn.execute('SELECT * FROM students WHERE id=?', (student_id,)).fetchone()
    conn.close()
    if row is None:
        return _error('Student not found', 404)
    return jsonify(_student_dict(row))


@app.route('/api/students/<int:student_id>', methods=['PUT'])
def update_student(student_id):
    data = _json_body()
    conn = get_db()
    c = conn.cursor()
    try:
        if c.execute('SELECT 1 FROM students WHERE id=?', (student_id,)).fetchone() is None:
            return _error('Student not found', 404)
        cleaned = _validate_student(c, data, partial=True)
        if 'fixed_schedule' in data:
            # Reject a bad schedule before any other column is written.
            course_id = cleaned.get('course_id') or c.execute(
                'SELECT course_id FROM students WHERE id=?', (student_id,)
            ).fetchone()['course_id']
            parse_schedule(data['fixed_schedule'], course_id)
        for key, value in cleaned.items():
            try:
                c.execute(f'UPDATE students SET {key}=? WHERE id=?', (value, student_id))
            except sqlite3.IntegrityError:
                conn.rollback()
                return _error(f'{key} {value!r} is already in use.', 409)
        conn.commit()
        if 'fixed_schedule' in data:
            _replace_schedule(conn, student_id, data['fixed_schedule'])
        row = c.execute('SELECT * FROM students WHERE id=?', (student_id,)).fetchone()
    finally:
        conn.close()
    return jsonify(_student_dict(row))


@app.route('/api/students/<int:student_id>', methods=['DELETE'])
def delete_student(student_id):
    """Delete a student together with their classes and tracking rows."""
    conn = get_db()
    c = conn.cursor()
    if c.execute('SELECT 1 FROM students WHERE id=?', (student_id,)).fetchone() is None:
        conn.close()
        return _error('Student not found', 404)
    c.execute('DELETE FROM classes WHERE student_id=?', (student_id,))
    removed = c.rowcount
    c.execute('DELETE FROM class_tracking WHERE student_id=?', (student_id,))
    c.execute('DELETE FROM exams WHERE student_id=?', (student_id,))
    c.execute('DELETE FROM students WHERE id=?', (student_id,))
    conn.commit()
    conn.close()
    return jsonify({'message': 'Student deleted', 'classesDeleted': removed})


@app.route('/api/students/<int:student_id>/schedule', methods=['GET'])
def get_schedule(student_id):
    conn = get_db()
    row = conn.execute('SELECT course_id, fixed_schedule FROM students WHERE id=?', (student_id,)).fetchone()
    conn.close()
    if row is None:
        return _error('Student not found', 404)
    try:
        slots = parse_schedule(row['fixed_schedule'], row['course_id'])
    except ValidationError as exc:
        return _error(f'Stored fixed schedule is invalid: {exc}', 500)
    return jsonify([s.to_dict() for s in slots])


@app.route('/api/students/<int:student_id>/schedule', methods=['PUT'])
def put_schedule(student_id):
    data = _json_body()
    if not isinstance(data.get('schedule'), list):
        return _error('schedule must be a list', 400)
    conn = get_db()
    try:
        if conn.execute('SELECT 1 FROM students WHERE id=?', (student_id,)).fetchone() is None:
            return _error('Student not found', 404)
        slots, removed, created = _replace_schedule(conn, student_id, data['schedule'])
    finally:
        conn.close()
    return jsonify({
        'schedule': [s.to_dict() for s in slots],
        'classesRemoved': removed,
        'classesCreated': created,
    })


# --- Classes ---

def _class_row_dict(row):
    data = dict(row)
    data['is_recurring'] = bool(data['is_recurring'])
    return data


@app.route('/api/classes', methods=['GET'])
def list_classes():
    """List classes, optionally filtered.

    Query parameters: ``ids`` (comma separated), ``studentId``, ``month``
    (``YYYY-MM``), or ``studentId`` + ``date`` + ``startTime`` to look up
    a single slot.
    """
    args = request.args
    query = (
        'SELECT cl.*, s.first_name, s.last_name, co.name AS course_name, co.color AS course_color '
        'FROM classes cl LEFT JOIN students s ON s.id = cl.student_id '
        'LEFT JOIN courses co ON co.id = cl.course_id WHERE 1=1'
    )
    params = []
    if args.get('ids'):
        ids = _ids_arg(args['ids'])
        query += f" AND cl.id IN ({','.join('?' for _ in ids)})"
        params.extend(ids)
    if args.get('studentId'):
        query += ' AND cl.student_id=?'
        params.append(_int_arg(args['studentId'], 'studentId'))
    if args.get('month'):
        first, last = month_bounds(*parse_month(args['month']))
        query += ' AND cl.date>=? AND cl.date<=?'
        params.extend([first.isoformat(), last.isoformat()])
    if args.get('date'):
        query += ' AND cl.date=?'
        params.append(parse_date(args['date']).isoformat())
    if args.get('startTime'):
        query += ' AND cl.start_time=?'
        params.append(normalize_time(args['startTime']))
    query += ' ORDER BY cl.date, cl.start_time'
    conn = get_db()
    rows = conn.execute(query, params).fetchall()
    conn.close()
    return jsonify([_class_row_dict(r) for r in rows])


@app.route('/api/classes', methods=['POST'])
def create_class():
    """Create a single class.  A duplicate slot is reported as 409."""
    instance = CalendarInstance.from_payload(_json_body())
    conn = get_db()
    c = conn.cursor()
    try:
        if instance.price is None:
            price_instance(c, instance)
        else:
            if c.execute('SELECT 1 FROM students WHERE id=?', (instance.student_id,)).fetchone() is None:
                raise ValidationError(f'Student {instance.student_id} not found.')
            if c.execute('SELECT 1 FROM courses WHERE id=?', (instance.course_id,)).fetchone() is None:
                raise ValidationError(f'Course {instance.course_id} not found.')
        insert_class(c, instance)
        conn.commit()
    finally:
        conn.close()
    return jsonify({'id': instance.id, 'price': instance.price, 'message': 'Class created'}), 201


@app.route('/api/classes/<int:class_id>', methods=['GET'])
def get_class(class_id):
    conn = get_db()
    row = conn.execute('SELECT * FROM classes WHERE id=?', (class_id,)).fetchone()
    conn.close()
    if row is None:
        return _error('Class not found', 404)
    return jsonify(_class_row_dict(row))


@app.route('/api/classes/<int:class_id>', methods=['PUT'])
def update_class(class_id):
    """Move or annotate a class.

    The stored price stays as it is unless ``price`` is sent explicitly.
    """
    data = _json_body()
    conn = get_db()
    c = conn.cursor()
    try:
        row = c.execute('SELECT * FROM classes WHERE id=?', (class_id,)).fetchone()
        if row is None:
            return _error('Class not found', 404)
        merged = dict(row)
        for key in ('date', 'start_time', 'end_time', 'notes', 'subject', 'price', 'status', 'payment_status'):
            if key in data:
                merged[key] = data[key]
        merged.pop('duration', None)
        updated = CalendarInstance.from_payload(merged)
        try:
            c.execute(
                'UPDATE classes SET date=?, start_time=?, end_time=?, duration=?, day_of_week=?, '
                'notes=?, subject=?, price=?, status=?, payment_status=? WHERE id=?',
                (
                    updated.date.isoformat(), updated.start_time, updated.end_time,
                    updated.duration, updated.day_of_week, updated.notes, updated.subject,
                    updated.price, updated.status, updated.payment_status, class_id,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateClassError(
                updated.student_id, updated.date.isoformat(), updated.start_time
            ) from exc
        conn.commit()
        row = c.execute('SELECT * FROM classes WHERE id=?', (class_id,)).fetchone()
    finally:
        conn.close()
    return jsonify(_class_row_dict(row))


@app.route('/api/classes/<int:class_id>', methods=['DELETE'])
def delete_class(class_id):
    conn = get_db()
    c = conn.cursor()
    c.execute('DELETE FROM classes WHERE id=?', (class_id,))
    deleted = c.rowcount
    conn.commit()
    conn.close()
    if not deleted:
        return _error('Class not found', 404)
    return jsonify({'message': 'Class deleted'})


@app.route('/api/classes', methods=['DELETE'])
def delete_classes():
    ids = _ids_arg(request.args.get('ids', ''))
    conn = get_db()
    c = conn.cursor()
    c.execute(f"DELETE FROM classes WHERE id IN ({','.join('?' for _ in ids)})", ids)
    deleted = c.rowcount
    conn.commit()
    conn.close()
    return jsonify({'deleted': deleted})


@app.route('/api/classes/<int:class_id>/status', methods=['PUT'])
def update_class_status(class_id):
    status = _json_body().get('status')
    if status not in CLASS_STATUSES:
        return _error(f"status must be one of: {', '.join(CLASS_STATUSES)}", 400)
    conn = get_db()
    c = conn.cursor()
    c.execute('UPDATE classes SET status=? WHERE id=?', (status, class_id))
    updated = c.rowcount
    conn.commit()
    conn.close()
    if not updated:
        return _error('Class not found', 404)
    return jsonify({'id': class_id, 'status': status})


@app.route('/api/classes/payment-status', methods=['PUT'])
def update_payment_status():
    """Mark several classes paid or unpaid in one request."""
    data = _json_body()
    ids = _ids_arg(data.get('ids'))
    payment_status = data.get('payment_status')
    if payment_status not in PAYMENT_STATUSES:
        return _error(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}", 400)
    paid_on = today().isoformat() if payment_status == 'paid' else None
    if payment_status == 'paid' and data.get('payment_date'):
        paid_on = parse_date(data['payment_date'], 'payment_date').isoformat()
    conn = get_db()
    c = conn.cursor()
    c.execute(
        f"UPDATE classes SET payment_status=?, payment_date=?, payment_notes=COALESCE(?, payment_notes) "
        f"WHERE id IN ({','.join('?' for _ in ids)})",
        [payment_status, paid_on, data.get('payment_notes')] + ids,
    )
    updated = c.rowcount
    conn.commit()
    conn.close()
    return jsonify({'updated': updated, 'payment_status': payment_status})


# --- Class tracking ---

def _comparison_range(data):
    """Work out the (start, end) window of a comparison request.

    ``month`` limits the window to that month (never past today); explicit
    ``start``/``end`` override it.  The start is clamped to each student's
    enrollment date later on.
    """
    now = today()
    start, end = None, now
    if data.get('month'):
        first, last = month_bounds(*parse_month(data['month']))
        start, end = first, min(last, now)
    if data.get('start'):
        start = parse_date(data['start'], 'start')
    if data.get('end'):
        end = parse_date(data['end'], 'end')
    # A month that has not started yet simply expects nothing.
    if (data.get('start') or data.get('end')) and start is not None and start > end:
        raise ValidationError('start must not be after end.')
    return start, end


def _students_for(c, student_id):
    if student_id in (None, ''):
        return c.execute('SELECT * FROM students ORDER BY id').fetchall()
    row = c.execute(
        'SELECT * FROM students WHERE id=?', (_int_arg(student_id, 'studentId'),)
    ).fetchone()
    return None if row is None else [row]


def _compare_row(c, row, start, end):
    """Reconcile one student row; bad data becomes an ``error`` entry."""
    name = f"{row['first_name']} {row['last_name']}"
    try:
        student = Student.from_row(row)
    except ValidationError as exc:
        return StudentComparison(row['id'], name, 'error', f'Invalid student data: {exc}')
    try:
        lower = start if start is not None else student.start_date
        actual = load_classes(c, student.id, lower, end)
    except sqlite3.Error:
        logging.exception('Failed to load classes for student %s', row['id'])
        return StudentComparison(row['id'], name, 'error', 'Could not load existing classes')
    return compare_student(student, actual, end, range_start=start)


@app.route('/api/class-tracking/compare', methods=['POST'])
def compare_classes():
    """Compare each student's fixed schedule with the recurring classes on record.

    Students without a start date or schedule are reported as ``skipped``
    and add nothing to the totals.
    """
    data = _json_body()
    start, end = _comparison_range(data)
    conn = get_db()
    c = conn.cursor()
    try:
        rows = _students_for(c, data.get('studentId'))
        if rows is None:
            return _error('Student not found', 404)
        comparisons = [_compare_row(c, row, start, end) for row in rows]
    finally:
        conn.close()
    return jsonify({
        'success': True,
        'results': [cmp.to_dict() for cmp in comparisons],
        'summary': aggregate(comparisons),
    })


@app.route('/api/class-tracking/generate-selected', methods=['POST'])
def generate_selected_classes():
    """Create only the missing classes the tutor ticked.

    Classes that already exist are counted as skipped; one bad record does
    not stop the others.
    """
    selected = _json_body().get('selectedClasses')
    if not isinstance(selected, list) or not selected:
        return _error('No classes selected', 400)
    conn = get_db()
    try:
        report = materialize(conn, selected)
    finally:
        conn.close()
    app.logger.info(
        'Generated selected classes: %d created, %d skipped, %d errors',
        report.created, report.skipped, len(report.errors),
    )
    return jsonify(dict(report.to_dict(), success=True))


def _generate_for_rows(conn, rows, start, end):
    """Materialize each student's missing classes between ``start`` and ``end``.

    Returns ``(total_created, results)`` with one result entry per student.
    """
    c = conn.cursor()
    results = []
    total_created = 0
    for row in rows:
        comparison = _compare_row(c, row, start, end)
        entry = {'studentId': comparison.student_id, 'studentName': comparison.student_name}
        if comparison.status != 'success':
            entry.update(status=comparison.status, reason=comparison.reason, classesCreated=0)
            results.append(entry)
            continue
        report = materialize(conn, comparison.result.missing)
        total_created += report.created
        entry.update(
            status='success',
            classesCreated=report.created,
            classesSkipped=report.skipped,
            errors=report.errors,
        )
        results.append(entry)
    return total_created, results


@app.route('/api/class-tracking/generate-missing', methods=['POST'])
def generate_missing_classes():
    """Create every missing class up to today for one or all students."""
    data = _json_body()
    conn = get_db()
    try:
        rows = _students_for(conn.cursor(), data.get('studentId'))
        if rows is None:
            return _error('Student not found', 404)
        total_created, results = _generate_for_rows(conn, rows, None, today())
    finally:
        conn.close()
    return jsonify({'success': True, 'totalClassesCreated': total_created, 'results': results})


def generate_week(conn, anchor):
    """Create the classes of the Monday..Sunday week containing ``anchor``.

    Days later in the week are included even when they are still in the
    future, so this can run once at the start of each week.
    """
    week = week_dates(anchor)
    rows = conn.execute('SELECT * FROM students ORDER BY id').fetchall()
    total_created, results = _generate_for_rows(conn, rows, week[0], week[-1])
    app.logger.info(
        'Weekly generation %s..%s: %d classes created', week[0], week[-1], total_created
    )
    return {
        'success': True,
        'weekStart': week[0].isoformat(),
        'weekEnd': week[-1].isoformat(),
        'totalClassesCreated': total_created,
        'studentsProcessed': sum(1 for r in results if r['status'] == 'success'),
        'results': results,
    }


@app.route('/api/class-tracking/generate-weekly', methods=['POST'])
def generate_weekly_classes():
    data = _json_body()
    anchor = parse_date(data['date']) if data.get('date') else today()
    conn = get_db()
    try:
        summary = generate_week(conn, anchor)
    finally:
        conn.close()
    return jsonify(summary)


def generate_student_tracking(c, student_id, month_year):
    """Recompute and store one student's ``class_tracking`` row."""
    row = c.execute('SELECT course_id, start_date FROM students WHERE id=?', (student_id,)).fetchone()
    if row is None:
        raise ValidationError(f'Student {student_id} not found.')
    first, last = month_bounds(*parse_month(month_year))
    if row['start_date'] and row['start_date'] > first.isoformat():
        first = parse_date(row['start_date'])
    stats = student_month_stats(load_classes(c, student_id, first, last))
    cols = ', '.join(TRACKING_FIELDS)
    placeholders = ', '.join('?' for _ in TRACKING_FIELDS)
    c.execute(
        f'INSERT OR REPLACE INTO class_tracking (student_id, course_id, month_year, {cols}, updated_at) '
        f'VALUES (?, ?, ?, {placeholders}, ?)',
        [student_id, row['course_id'], month_year]
        + [stats[f] for f in TRACKING_FIELDS]
        + [datetime.now().isoformat(timespec='seconds')],
    )
    return dict(stats, student_id=student_id, course_id=row['course_id'], month_year=month_year)


def generate_monthly_report(conn, month_year):
    """Refresh every student's tracking row, then the month's aggregate.

    A failure for one student is logged and skipped.
    """
    c = conn.cursor()
    parse_month(month_year)
    tracking = []
    for row in c.execute('SELECT id FROM students ORDER BY id').fetchall():
        try:
            tracking.append(generate_student_tracking(c, row['id'], month_year))
        except (ValidationError, sqlite3.Error):
            logging.exception('Failed to build tracking for student %s', row['id'])
    report = aggregate_month(tracking)
    cols = ', '.join(REPORT_FIELDS)
    placeholders = ', '.join('?' for _ in REPORT_FIELDS)
    c.execute(
        f'INSERT OR REPLACE INTO monthly_reports (month_year, {cols}, updated_at) '
        f'VALUES (?, {placeholders}, ?)',
        [month_year] + [report[f] for f in REPORT_FIELDS]
        + [datetime.now().isoformat(timespec='seconds')],
    )
    conn.commit()
    return dict(report, month_year=month_year)


@app.route('/api/class-tracking', methods=['GET'])
def class_tracking():
    month_year = request.args.get('month') or today().strftime('%Y-%m')
    parse_month(month_year)
    conn = get_db()
    c = conn.cursor()
    try:
        rows = _students_for(c, request.args.get('studentId'))
        if rows is None:
            return _error('Student not found', 404)
        tracking = []
        for row in rows:
            stats = generate_student_tracking(c, row['id'], month_year)
            stats['studentName'] = f"{row['first_name']} {row['last_name']}"
            tracking.append(stats)
        conn.commit()
    finally:
        conn.close()
    return jsonify(tracking)


@app.route('/api/class-tracking/monthly-report', methods=['GET'])
def get_monthly_report():
    month_year = request.args.get('month') or today().strftime('%Y-%m')
    parse_month(month_year)
    conn = get_db()
    try:
        row = conn.execute('SELECT * FROM monthly_reports WHERE month_year=?', (month_year,)).fetchone()
        report = dict(row) if row is not None else generate_monthly_report(conn, month_year)
    finally:
        conn.close()
    return jsonify(report)


@app.route('/api/class-tracking/monthly-report', methods=['POST'])
def refresh_monthly_report():
    month_year = _json_body().get('monthYear')
    if not month_year:
        return _error('monthYear is required', 400)
    conn = get_db()
    try:
        report = generate_monthly_report(conn, month_year)
    finally:
        conn.close()
    return jsonify({'success': True, 'report': report})


# --- Calendar ---

def _hidden_cache(c):
    return HiddenScheduleCache(session, ttl_days=get_settings(c)['hidden_ttl_days'])


def _load_ghosts(c):
    ghosts = []
    for row in c.execute('SELECT * FROM students ORDER BY id').fetchall():
        try:
            student = Student.from_row(row)
        except ValidationError:
            app.logger.warning('Skipping student %s with an invalid schedule', row['id'])
            continue
        for slot in student.schedule:
            ghosts.append(GhostSlot(student.id, student.name, student.start_date, slot))
    return ghosts


@app.route('/api/calendar/week', methods=['GET'])
def calendar_week():
    """Classes and fixed-schedule projections for the week containing ``date``."""
    anchor = parse_date(request.args.get('date') or today().isoformat())
    week = week_dates(anchor)
    conn = get_db()
    c = conn.cursor()
    try:
        instances = load_classes(c, start=week[0], end=week[-1])
        ghosts = _load_ghosts(c)
        hidden = set(_hidden_cache(c).keys(week[0].isoformat()))
    finally:
        conn.close()
    return jsonify(week_view(anchor, instances, ghosts, hidden))


@app.route('/api/calendar/slot', methods=['GET'])
def calendar_slot():
    on = parse_date(request.args.get('date'))
    time = normalize_time(request.args.get('time'))
    conn = get_db()
    c = conn.cursor()
    try:
        instances = load_classes(c, start=on, end=on)
        ghosts = _load_ghosts(c)
        hidden = set(_hidden_cache(c).keys(week_dates(on)[0].isoformat()))
    finally:
        conn.close()
    occupant = find_occupant(on, time, instances, ghosts, hidden)
    return jsonify(occupant.to_dict(on) if occupant else None)


@app.route('/api/calendar/hidden', methods=['GET'])
def list_hidden():
    conn = get_db()
    cache = _hidden_cache(conn.cursor())
    conn.close()
    return jsonify(cache.keys(request.args.get('week')))


@app.route('/api/calendar/hidden', methods=['POST'])
def hide_fixed_slot():
    """Hide one recurring slot for the week containing ``date``."""
    data = _json_body()
    if data.get('student_id') in (None, '') or not data.get('start_time'):
        return _error('student_id and start_time are required', 400)
    on = parse_date(data.get('date') or today().isoformat())
    week = week_dates(on)
    if data.get('day_of_week') in (None, ''):
        day = on.isoweekday()
    else:
        day = normalize_day_of_week(data['day_of_week'])
    key = hidden_key(_int_arg(data['student_id'], 'student_id'), day, data['start_time'], week)
    conn = get_db()
    cache = _hidden_cache(conn.cursor())
    conn.close()
    cache.hide(week[0].isoformat(), key)
    return jsonify({'key': key, 'weekStart': week[0].isoformat()})


@app.route('/api/calendar/hidden', methods=['DELETE'])
def restore_hidden():
    conn = get_db()
    cache = _hidden_cache(conn.cursor())
    conn.close()
    if request.args.get('week'):
        week_start = week_dates(parse_date(request.args['week'], 'week'))[0].isoformat()
        restored = cache.restore_week(week_start)
    else:
        restored = cache.clear()
    return jsonify({'restored': restored})


@app.route('/api/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'message': 'Logged out'})


# --- Exams ---

def _validate_exam(data):
    """Return the exam columns to write; ``subject`` and ``exam_date`` are required."""
    subject = str(data.get('subject') or '').strip()
    if not subject or not data.get('exam_date'):
        raise ValidationError('subject and exam_date are required.')
    exam_time = data.get('exam_time')
    grade = data.get('grade')
    if grade in (None, ''):
        grade = None
    else:
        try:
            grade = float(grade)
        except (TypeError, ValueError):
            raise ValidationError('grade must be a number.') from None
        if grade < 0:
            raise ValidationError('grade cannot be negative.')
    return {
        'subject': subject,
        'exam_date': parse_date(data['exam_date'], 'exam_date').isoformat(),
        'exam_time': normalize_time(exam_time) if exam_time not in (None, '') else None,
        'notes': str(data.get('notes') or '').strip() or None,
        'grade': grade,
    }


def _student_exists(c, student_id):
    return c.execute('SELECT 1 FROM students WHERE id=?', (student_id,)).fetchone() is not None


@app.route('/api/students/<int:student_id>/exams', methods=['GET'])
def list_exams(student_id):
    conn = get_db()
    c = conn.cursor()
    try:
        if not _student_exists(c, student_id):
            return _error('Student not found', 404)
        rows = c.execute(
            'SELECT * FROM exams WHERE student_id=? ORDER BY exam_date, exam_time',
            (student_id,),
        ).fetchall()
    finally:
        conn.close()
    return jsonify([dict(r) for r in rows])


@app.route('/api/students/<int:student_id>/exams', methods=['POST'])
def create_exam(student_id):
    cleaned = _validate_exam(_json_body())
    conn = get_db()
    c = conn.cursor()
    try:
        if not _student_exists(c, student_id):
            return _error('Student not found', 404)
        c.execute(
            'INSERT INTO exams (student_id, subject, exam_date, exam_time, notes, grade) '
            'VALUES (?, ?, ?, ?, ?, ?)',
            (student_id, cleaned['subject'], cleaned['exam_date'], cleaned['exam_time'],
             cleaned['notes'], cleaned['grade']),
        )
        exam_id = c.lastrowid
        conn.commit()
        row = c.execute('SELECT * FROM exams WHERE id=?', (exam_id,)).fetchone()
    finally:
        conn.close()
    return jsonify(dict(row)), 201


@app.route('/api/students/<int:student_id>/exams/<int:exam_id>', methods=['PUT'])
def update_exam(student_id, exam_id):
    cleaned = _validate_exam(_json_body())
    conn = get_db()
    c = conn.cursor()
    try:
        c.execute(
            'UPDATE exams SET subject=?, exam_date=?, exam_time=?, notes=?, grade=? '
            'WHERE id=? AND student_id=?',
            (cleaned['subject'], cleaned['exam_date'], cleaned['exam_time'],
             cleaned['notes'], cleaned['grade'], exam_id, student_id),
        )
        if not c.rowcount:
            return _error('Exam not found', 404)
        conn.commit()
        row = c.execute('SELECT * FROM exams WHERE id=?', (exam_id,)).fetchone()
    finally:
        conn.close()
    return jsonify(dict(row))


@app.route('/api/students/<int:student_id>/exams/<int:exam_id>', methods=['DELETE'])
def delete_exam(student_id, exam_id):
    conn = get_db()
    c = conn.cursor()
    c.execute('DELETE FROM exams WHERE id=? AND student_id=?', (exam_id, student_id))
    deleted = c.rowcount
    conn.commit()
    conn.close()
    if not deleted:
        return _error('Exam not found', 404)
    return jsonify({'message': 'Exam deleted'})


# --- Statistics ---

@app.route('/api/stats', methods=['GET'])
def stats():
    now = today()
    month = parse_month(request.args['month']) if request.args.get('month') else (now.year, now.month)
    first, last = month_bounds(*month)
    conn = get_db()
    c = conn.cursor()
    try:
        classes = load_classes(c, start=min(first, now), end=max(last, now))
        total_students = c.execute('SELECT COUNT(*) FROM students').fetchone()[0]
    finally:
        conn.close()
    return jsonify(dashboard_stats(classes, now, month, total_students))


if __name__ == '__main__':
    init_db()
    app.run(debug=True)
