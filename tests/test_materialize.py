import os
import sys
import threading
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from tracking.materialize import materialize
from tracking.models import CalendarInstance


def setup_db(tmp_path):
    import app
    app.DB_PATH = str(tmp_path / 'test.db')
    app.init_db()
    return app


def class_data(**kwargs):
    data = {
        'student_id': 1,
        'course_id': 1,
        'date': '2024-01-08',
        'start_time': '16:00',
        'end_time': '17:00',
    }
    data.update(kwargs)
    return data


def test_duplicate_in_one_batch_is_created_once(tmp_path):
    app = setup_db(tmp_path)
    conn = app.get_db()
    report = materialize(conn, [class_data(), class_data(end_time='17:30')])
    rows = conn.execute('SELECT * FROM classes').fetchall()
    conn.close()
    assert report.created == 1
    assert report.skipped == 1
    assert report.errors == []
    assert len(rows) == 1
    assert report.results[1]['status'] == 'skipped'


def test_price_from_course_rate_and_frozen(tmp_path):
    app = setup_db(tmp_path)
    conn = app.get_db()
    # Mathematics costs 20 per hour in the sample data
    materialize(conn, [class_data(end_time='17:30', price=999)])
    conn.execute('UPDATE courses SET price=40 WHERE id=1')
    conn.commit()
    row = conn.execute('SELECT * FROM classes').fetchone()
    conn.close()
    assert row['price'] == 30.0
    assert row['duration'] == 90
    assert row['day_of_week'] == 1
    assert row['is_recurring'] == 1
    assert row['status'] == 'scheduled'
    assert row['payment_status'] == 'unpaid'


def test_shared_pricing_uses_shared_rate(tmp_path):
    app = setup_db(tmp_path)
    conn = app.get_db()
    conn.execute('UPDATE students SET has_shared_pricing=1 WHERE id=1')
    conn.commit()
    materialize(conn, [class_data()])
    price = conn.execute('SELECT price FROM classes').fetchone()['price']
    conn.close()
    assert price == 15.0


def test_bad_records_do_not_stop_the_batch(tmp_path):
    app = setup_db(tmp_path)
    conn = app.get_db()
    report = materialize(conn, [
        class_data(student_id=999),
        class_data(end_time='15:00'),
        class_data(date='2024-01-15'),
    ])
    count = conn.execute('SELECT COUNT(*) FROM classes').fetchone()[0]
    conn.close()
    assert report.created == 1
    assert len(report.errors) == 2
    assert count == 1
    assert report.to_dict()['summary'] == {'totalSelected': 3, 'created': 1, 'skipped': 0, 'errors': 2}


def test_instances_get_their_new_ids(tmp_path):
    app = setup_db(tmp_path)
    conn = app.get_db()
    instance = CalendarInstance(1, 1, date(2024, 1, 8), '16:00', '17:00')
    materialize(conn, [instance])
    conn.close()
    assert instance.id is not None
    assert instance.is_recurring


def test_concurrent_batches_create_one_row(tmp_path):
    app = setup_db(tmp_path)
    barrier = threading.Barrier(2)
    reports = []

    def worker():
        conn = app.get_db()
        barrier.wait()
        reports.append(materialize(conn, [class_data()]))
        conn.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r.created for r in reports) == [0, 1]
    assert sorted(r.skipped for r in reports) == [0, 1]
    assert all(r.errors == [] for r in reports)
    conn = app.get_db()
    count = conn.execute('SELECT COUNT(*) FROM classes').fetchone()[0]
    conn.close()
    assert count == 1
