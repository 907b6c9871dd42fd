"""Shared fixtures: in-memory database, test client and seeded route data"""
import os

# Must be set before the app module creates its engine
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite://'
os.environ['DEFAULT_ADMIN_EMAIL'] = 'admin@lelani.co.ke'
os.environ['DEFAULT_ADMIN_PASSWORD'] = 'password123'

import pytest

from app import app as flask_app, db, ensure_default_admin
import routes  # noqa: F401 registers the views
import database_store as data_store

ADMIN_EMAIL = 'admin@lelani.co.ke'
ADMIN_PASSWORD = 'password123'
DRIVER_EMAIL = 'driver@lelani.co.ke'
DRIVER_PASSWORD = 'driverpass1'


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True, WTF_CSRF_ENABLED=False)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        ensure_default_admin()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, email, password):
    return client.post('/login', data={'email': email, 'password': password}, follow_redirects=False)


@pytest.fixture
def admin_client(client):
    response = login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    assert response.status_code == 302
    return client


@pytest.fixture
def route_data(app):
    """Two routes with areas, staff and a handful of learners"""
    route_a = data_store.create_route('Route A', vehicle_no='kcb 123a', areas=['Kileleshwa', 'Lavington'],
                                      term='Term 2', year=2024)
    route_b = data_store.create_route('Route B', vehicle_no='KDA 456B', areas=['Westlands'], term='Term 2', year=2024)
    data_store.create_vehicle('KCB 123A', make='Toyota', model='Hiace', capacity=4)
    driver_id = data_store.create_driver('Peter Kamau', DRIVER_EMAIL, phone='+254711000111',
                                         route_id=route_a, password=DRIVER_PASSWORD)
    minder_id = data_store.create_minder('Grace Achieng', '+254722000222', driver_id=driver_id, route_id=route_a)

    learners = {}
    for name, adm, class_name, trip, area in [
        ('Zawadi Njeri', 'ADM010', 'Grade 2', 2, 'Lavington'),
        ('Amani Otieno', 'ADM011', 'Grade 1', 1, 'Kileleshwa'),
        ('Baraka Mwangi', 'ADM012', 'Grade 1', 3, 'Kileleshwa'),
    ]:
        learners[name] = data_store.create_learner(
            name=name, admission_no=adm, class_name=class_name, trip=trip, pickup_area=area,
            route_id=route_a, father_phone='+254733000333'
        )
    learners['Wanjiku Kariuki'] = data_store.create_learner(
        name='Wanjiku Kariuki', admission_no='ADM020', class_name='Grade 3', trip=1,
        pickup_area='Westlands', route_id=route_b
    )
    return {
        'route_a': route_a,
        'route_b': route_b,
        'driver_id': driver_id,
        'minder_id': minder_id,
        'learners': learners,
    }


@pytest.fixture
def driver_client(client, route_data):
    response = login(client, DRIVER_EMAIL, DRIVER_PASSWORD)
    assert response.status_code == 302
    return client
