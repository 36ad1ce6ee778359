import os
import sys
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

MONDAY = {'day_of_week': 1, 'start_time': '16:00', 'end_time': '17:00'}


def setup_db(tmp_path, monkeypatch, today=date(2024, 1, 14)):
    import app
    app.DB_PATH = str(tmp_path / 'test.db')
    app.init_db()
    monkeypatch.setattr(app, 'today', lambda: today)
    return app


def student_payload(**kwargs):
    data = {
        'first_name': 'Marta',
        'last_name': 'Lopez',
        'student_code': 'S100',
        'course_id': 1,
        'start_date': '2024-01-01',
        'fixed_schedule': [MONDAY],
    }
    data.update(kwargs)
    return data


def test_create_student_backfills_classes(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    resp = client.post('/api/students', json=student_payload())
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['classesCreated'] == 2

    classes = client.get(f"/api/classes?studentId={body['id']}").get_json()
    assert [c['date'] for c in classes] == ['2024-01-01', '2024-01-08']
    assert all(c['is_recurring'] for c in classes)
    assert classes[0]['price'] == 20.0

    student = client.get(f"/api/students/{body['id']}").get_json()
    assert student['fixed_schedule'][0]['day_of_week'] == 1
    assert student['fixed_schedule'][0]['course_id'] == 1


def test_create_student_validation(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()

    resp = client.post('/api/students', json={'first_name': 'Marta'})
    assert resp.status_code == 400
    assert 'last_name' in resp.get_json()['error']

    resp = client.post('/api/students', json=student_payload(start_date='2024-02-01'))
    assert resp.status_code == 400

    resp = client.post('/api/students', json=student_payload(course_id=99))
    assert resp.status_code == 400

    overlapping = [MONDAY, {'day_of_week': 1, 'start_time': '16:30', 'end_time': '17:30'}]
    resp = client.post('/api/students', json=student_payload(fixed_schedule=overlapping))
    assert resp.status_code == 400
    assert 'overlap' in resp.get_json()['error']

    resp = client.post('/api/students', json=student_payload(fixed_schedule=[
        {'day_of_week': 9, 'start_time': '16:00', 'end_time': '17:00'}
    ]))
    assert resp.status_code == 400

    # S001 belongs to a sample student
    resp = client.post('/api/students', json=student_payload(student_code='S001'))
    assert resp.status_code == 409

    assert len(client.get('/api/students').get_json()) == 2


def test_sunday_sent_as_zero_is_stored_as_seven(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    resp = client.post('/api/students', json=student_payload(
        fixed_schedule=[{'day_of_week': 0, 'start_time': '09:00', 'end_time': '10:00'}]
    ))
    sid = resp.get_json()['id']
    assert resp.get_json()['classesCreated'] == 2
    schedule = client.get(f'/api/students/{sid}/schedule').get_json()
    assert schedule[0]['day_of_week'] == 7


def test_schedule_update_regenerates_future_classes(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    sid = client.post('/api/students', json=student_payload()).get_json()['id']

    wednesday = {'day_of_week': 3, 'start_time': '10:00', 'end_time': '11:00'}
    resp = client.put(f'/api/students/{sid}/schedule', json={'schedule': [wednesday]})
    assert resp.status_code == 200
    body = resp.get_json()
    # Wednesdays from 2024-01-17 through the 90 day horizon (2024-04-13)
    assert body['classesCreated'] == 13
    assert body['classesRemoved'] == 0

    classes = client.get(f'/api/classes?studentId={sid}').get_json()
    past = [c for c in classes if c['date'] < '2024-01-14']
    assert [c['date'] for c in past] == ['2024-01-01', '2024-01-08']

    # running it again replaces the future classes instead of adding more
    body = client.put(f'/api/students/{sid}/schedule', json={'schedule': [wednesday]}).get_json()
    assert body['classesRemoved'] == 13
    assert body['classesCreated'] == 13


def test_schedule_update_requires_list(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    assert client.put('/api/students/1/schedule', json={'schedule': 'x'}).status_code == 400
    assert client.put('/api/students/999/schedule', json={'schedule': []}).status_code == 404


def test_update_and_delete_student(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    sid = client.post('/api/students', json=student_payload()).get_json()['id']

    resp = client.put(f'/api/students/{sid}', json={'phone': '555-1234', 'has_shared_pricing': True})
    assert resp.status_code == 200
    assert resp.get_json()['phone'] == '555-1234'
    assert resp.get_json()['has_shared_pricing'] is True

    resp = client.delete(f'/api/students/{sid}')
    assert resp.get_json()['classesDeleted'] == 2
    assert client.get(f'/api/students/{sid}').status_code == 404
    assert client.get(f'/api/classes?studentId={sid}').get_json() == []
    assert client.delete(f'/api/students/{sid}').status_code == 404


def test_course_crud(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    resp = client.post('/api/courses', json={'name': 'Chemistry', 'price': 30, 'duration': 90})
    assert resp.status_code == 201
    cid = resp.get_json()['id']

    resp = client.put(f'/api/courses/{cid}', json={'shared_class_price': 22.5})
    assert resp.get_json()['shared_class_price'] == 22.5
    assert client.post('/api/courses', json={'name': 'Bad', 'price': -1, 'duration': 60}).status_code == 400

    # Mathematics is used by the sample students
    assert client.delete('/api/courses/1').status_code == 409
    assert client.delete(f'/api/courses/{cid}').status_code == 200
    assert client.get(f'/api/courses/{cid}').status_code == 404
    assert [c['name'] for c in client.get('/api/courses').get_json()] == ['Mathematics', 'Physics']


def test_invalid_schedule_on_update_writes_nothing(tmp_path, monkeypatch):
    app = setup_db(tmp_path, monkeypatch)
    client = app.app.test_client()
    bad = [{'day_of_week': 1, 'start_time': '17:00', 'end_time': '16:00'}]
    resp = client.put('/api/students/1', json={'phone': '999', 'fixed_schedule': bad})
    assert resp.status_code == 400
    student = client.get('/api/students/1').get_json()
    assert student['phone'] is None
    assert student['fixed_schedule'][0]['start_time'] == '16:00'
