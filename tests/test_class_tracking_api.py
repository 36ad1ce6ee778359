import os
import sys
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))


def setup_db(tmp_path, monkeypatch, today=date(2024, 1, 31)):
    """Sample student 1 starts on 2024-01-01 with a Monday 16:00-17:00 slot;
    sample student 2 has neither start date nor schedule."""
    import app
    app.DB_PATH = str(tmp_path / 'test.db')
    app.init_db()
    monkeypatch.setattr(app, 'today', lambda: today)
    return app


def compare(client, **body):
    resp = client.post('/api/class-tracking/compare', json=body)
    assert resp.status_code == 200
    return resp.get_json()


def test_generate_missing_then_compare_matches(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()

    before = compare(client, studentId=1)['results'][0]
    assert before['status'] == 'success'
    assert before['summary']['expected'] == 5
    assert [m['date'] for m in before['missing']] == [
        '2024-01-01', '2024-01-08', '2024-01-15', '2024-01-22', '2024-01-29',
    ]

    resp = client.post('/api/class-tracking/generate-missing', json={'studentId': 1})
    assert resp.get_json()['totalClassesCreated'] == 5

    after = compare(client, studentId=1)['results'][0]
    assert after['missing'] == []
    assert after['extra'] == []
    assert after['summary']['match'] == after['summary']['expected'] == 5

    # a second run has nothing left to do
    resp = client.post('/api/class-tracking/generate-missing', json={'studentId': 1})
    assert resp.get_json()['totalClassesCreated'] == 0


def test_compare_all_reports_skipped_students(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    body = compare(client)
    by_id = {r['studentId']: r for r in body['results']}
    assert by_id[2]['status'] == 'skipped'
    assert by_id[2]['reason'] == 'No start date or fixed schedule configured'
    assert body['summary']['totalStudents'] == 2
    assert body['summary']['skipped'] == 1
    assert body['summary']['totalMissing'] == 5
    assert body['summary']['studentsWithIssues'] == 1


def test_moved_class_shows_as_missing_and_extra(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    client.post('/api/classes', json={
        'student_id': 1, 'course_id': 1, 'date': '2024-01-08',
        'start_time': '16:15', 'end_time': '17:15', 'is_recurring': True,
    })
    # an ad hoc class never counts as extra
    client.post('/api/classes', json={
        'student_id': 1, 'course_id': 1, 'date': '2024-01-10',
        'start_time': '10:00', 'end_time': '11:00',
    })
    result = compare(client, studentId=1, month='2024-01')['results'][0]
    assert '2024-01-08' in [m['date'] for m in result['missing']]
    assert [(e['date'], e['start_time']) for e in result['extra']] == [('2024-01-08', '16:15')]


def test_compare_month_window(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch, today=date(2024, 2, 14))
    client = app.app.test_client()
    result = compare(client, studentId=1, month='2024-02')['results'][0]
    assert result['dateRange'] == {'startDate': '2024-02-01', 'endDate': '2024-02-14'}
    assert result['summary']['expected'] == 2

    resp = client.post('/api/class-tracking/compare', json={'start': '2024-02-10', 'end': '2024-02-01'})
    assert resp.status_code == 400
    resp = client.post('/api/class-tracking/compare', json={'studentId': 99})
    assert resp.status_code == 404


def test_generate_selected(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    assert client.post('/api/class-tracking/generate-selected', json={'selectedClasses': []}).status_code == 400

    missing = compare(client, studentId=1)['results'][0]['missing']
    selected = missing[:2] + [missing[0], {'student_id': 1}]
    resp = client.post('/api/class-tracking/generate-selected', json={'selectedClasses': selected})
    body = resp.get_json()
    assert body['summary'] == {'totalSelected': 4, 'created': 2, 'skipped': 1, 'errors': 1}

    after = compare(client, studentId=1)['results'][0]
    assert after['summary']['missing'] == 3


def test_tracking_and_monthly_report(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    client.post('/api/class-tracking/generate-missing', json={'studentId': 1})
    classes = client.get('/api/classes?studentId=1').get_json()
    client.put(f"/api/classes/{classes[0]['id']}/status", json={'status': 'completed'})
    client.put(f"/api/classes/{classes[1]['id']}/status", json={'status': 'completed'})
    client.put('/api/classes/payment-status', json={'ids': [classes[0]['id']], 'payment_status': 'paid'})

    tracking = client.get('/api/class-tracking?studentId=1&month=2024-01').get_json()
    assert tracking[0]['total_classes_scheduled'] == 5
    assert tracking[0]['total_classes_completed'] == 2
    assert tracking[0]['total_earned'] == 40.0
    assert tracking[0]['total_paid'] == 20.0
    assert tracking[0]['studentName'] == 'Ana Garcia'

    resp = client.post('/api/class-tracking/monthly-report', json={'monthYear': '2024-01'})
    report = resp.get_json()['report']
    assert report['total_students'] == 2
    assert report['total_recurring_classes'] == 5
    assert report['total_earned'] == 40.0
    assert report['average_earned_per_student'] == 20.0

    stored = client.get('/api/class-tracking/monthly-report?month=2024-01').get_json()
    assert stored['total_unpaid'] == 20.0
    assert client.post('/api/class-tracking/monthly-report', json={}).status_code == 400


def test_stats(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch, today=date(2024, 1, 29))
    client = app.app.test_client()
    client.post('/api/class-tracking/generate-missing', json={})
    stats = client.get('/api/stats').get_json()
    assert stats['month'] == '2024-01'
    assert stats['todayClasses'] == 1
    assert stats['monthlyClasses'] == 5
    assert stats['totalStudents'] == 2
    assert stats['monthlyIncome'] == 0


def test_ad_hoc_class_on_expected_slot_counts_as_match(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    resp = client.post('/api/classes', json={
        'student_id': 1, 'course_id': 1, 'date': '2024-01-08',
        'start_time': '16:00', 'end_time': '17:00',
    })
    assert resp.status_code == 201

    resp = client.post('/api/class-tracking/generate-missing', json={'studentId': 1})
    assert resp.get_json()['totalClassesCreated'] == 4

    result = compare(client, studentId=1)['results'][0]
    assert result['missing'] == []
    assert result['extra'] == []
    assert result['summary']['match'] == result['summary']['expected'] == 5


def test_future_month_expects_nothing(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    result = compare(client, studentId=1, month='2099-01')['results'][0]
    assert result['status'] == 'success'
    assert result['summary']['expected'] == 0
    assert result['missing'] == []


def test_generate_weekly(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch, today=date(2024, 1, 10))
    client = app.app.test_client()
    body = client.post('/api/class-tracking/generate-weekly', json={}).get_json()
    assert body['weekStart'] == '2024-01-08'
    assert body['weekEnd'] == '2024-01-14'
    assert body['totalClassesCreated'] == 1
    assert body['studentsProcessed'] == 1
    by_id = {r['studentId']: r for r in body['results']}
    assert by_id[2]['status'] == 'skipped'

    classes = client.get('/api/classes?studentId=1').get_json()
    assert [c['date'] for c in classes] == ['2024-01-08']

    again = client.post('/api/class-tracking/generate-weekly', json={}).get_json()
    assert again['totalClassesCreated'] == 0

    # later in the week is included even if still ahead of today
    body = client.post('/api/class-tracking/generate-weekly', json={'date': '2024-01-15'}).get_json()
    assert body['totalClassesCreated'] == 1
