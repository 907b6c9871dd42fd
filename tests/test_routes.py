"""Tests for the Flask views: auth, role scoping, CRUD endpoints and report downloads"""
from io import BytesIO

from openpyxl import load_workbook

import database_store as data_store

AJAX = {'X-Requested-With': 'XMLHttpRequest'}


class TestAuth:

    def test_login_page(self, client):
        response = client.get('/login')
        assert response.status_code == 200
        assert b'Sign In' in response.data

    def test_pages_require_login(self, client):
        response = client.get('/reports')
        assert response.status_code == 302
        assert '/login' in response.headers['Location']

    def test_bad_password(self, client):
        response = client.post('/login', data={'email': 'admin@lelani.co.ke', 'password': 'wrong-password'})
        assert response.status_code == 200
        assert b'Invalid email or password' in response.data

    def test_register_creates_driver(self, client):
        response = client.post('/register', data={
            'name': 'Joseph Kiptoo', 'email': 'joseph@lelani.co.ke', 'phone': '+254799000111',
            'password': 'securepass', 'confirm_password': 'securepass',
        })
        assert response.status_code == 302
        drivers = [d for d in data_store.get_all_drivers().values() if d['email'] == 'joseph@lelani.co.ke']
        assert drivers and drivers[0]['role'] == 'driver'

    def test_register_rejects_bad_phone(self, client):
        response = client.post('/register', data={
            'name': 'Joseph Kiptoo', 'email': 'joseph@lelani.co.ke', 'phone': '0799000111',
            'password': 'securepass', 'confirm_password': 'securepass',
        })
        assert response.status_code == 200
        assert b'+254XXXXXXXXX' in response.data

    def test_logout(self, admin_client):
        response = admin_client.get('/logout')
        assert response.status_code == 302
        assert admin_client.get('/dashboard').status_code == 302


class TestDashboard:

    def test_admin_stats(self, admin_client, route_data):
        response = admin_client.get('/api/dashboard-stats')
        assert response.get_json()['stats']['total_learners'] == 4

    def test_driver_sees_own_route(self, driver_client):
        stats = driver_client.get('/api/dashboard-stats').get_json()['stats']
        assert stats['route_name'] == 'Route A'
        assert stats['total_learners'] == 3

    def test_analytics_is_admin_only(self, driver_client):
        response = driver_client.get('/api/analytics', headers=AJAX)
        assert response.status_code == 403

    def test_dashboard_page_renders(self, admin_client, route_data):
        assert admin_client.get('/dashboard').status_code == 200


class TestLearnerViews:

    def test_add_learner_json(self, admin_client, route_data):
        response = admin_client.post('/learners/add', headers=AJAX, data={
            'name': 'Neema Wambui', 'admission_no': 'ADM040', 'class_name': 'PP1', 'trip': '2',
            'route_id': route_data['route_b'], 'mother_phone': '+254712000999',
        })
        body = response.get_json()
        assert body['success'] is True
        assert data_store.get_learner(body['learner_id'])['trip'] == 2

    def test_duplicate_admission_number_message(self, admin_client, route_data):
        response = admin_client.post('/learners/add', headers=AJAX, data={
            'name': 'Copy', 'admission_no': 'ADM010', 'route_id': route_data['route_a'],
        })
        assert response.status_code == 400
        assert response.get_json()['message'] == 'A learner with this admission number already exists'

    def test_driver_add_is_forced_to_own_route(self, driver_client, route_data):
        response = driver_client.post('/learners/add', headers=AJAX, data={
            'name': 'Tumaini Ali', 'admission_no': 'ADM041', 'route_id': route_data['route_b'],
        })
        learner = data_store.get_learner(response.get_json()['learner_id'])
        assert learner['route_id'] == route_data['route_a']

    def test_driver_cannot_edit_other_route(self, driver_client, route_data):
        learner_id = route_data['learners']['Wanjiku Kariuki']
        response = driver_client.post(f'/learners/{learner_id}/edit', headers=AJAX, data={'pickup_area': 'Karen'})
        assert response.status_code == 404
        assert data_store.get_learner(learner_id)['pickup_area'] == 'Westlands'

    def test_deactivate(self, admin_client, route_data):
        learner_id = route_data['learners']['Amani Otieno']
        response = admin_client.post(f'/learners/{learner_id}/deactivate', headers=AJAX)
        assert response.get_json()['success']
        assert data_store.get_learner(learner_id)['active'] is False

    def test_learner_list_is_scoped_for_drivers(self, driver_client, route_data):
        response = driver_client.get('/learners')
        assert b'Amani Otieno' in response.data
        assert b'Wanjiku Kariuki' not in response.data


class TestAdminViews:

    def test_admin_page_blocked_for_drivers(self, driver_client):
        response = driver_client.get('/admin')
        assert response.status_code == 302

    def test_admin_page_renders(self, admin_client, route_data):
        response = admin_client.get('/admin')
        assert response.status_code == 200
        assert b'Route A' in response.data

    def test_add_route_requires_name(self, admin_client):
        response = admin_client.post('/routes/add', headers=AJAX, data={'name': ' '})
        assert response.get_json() == {'success': False, 'message': 'Route name is required'}

    def test_add_route_with_areas(self, admin_client):
        response = admin_client.post('/routes/add', headers=AJAX, data={
            'name': 'Route C', 'areas': 'Karen, Langata\nRongai', 'year': '2025',
        })
        route = data_store.get_route(response.get_json()['route_id'])
        assert route['areas'] == ['Karen', 'Langata', 'Rongai']
        assert route['year'] == 2025

    def test_minder_phone_validated(self, admin_client):
        response = admin_client.post('/minders/add', headers=AJAX, data={'name': 'Grace', 'phone': '0722'})
        assert response.status_code == 400
        assert 'format' in response.get_json()['message']

    def test_form_post_flashes_and_redirects(self, admin_client):
        response = admin_client.post('/grades/add', data={'name': 'Grade 7'})
        assert response.status_code == 302
        assert [g['name'] for g in data_store.get_all_grades()] == ['Grade 7']

    def test_save_settings(self, admin_client):
        response = admin_client.post('/settings', headers=AJAX, data={'school_name': 'Hillcrest Academy'})
        assert response.get_json()['settings']['school_name'] == 'Hillcrest Academy'

    def test_import_learners(self, admin_client, route_data):
        csv_bytes = b'Name,Admission No,Route\nImani Chege,ADM300,Route B\n'
        response = admin_client.post('/admin/import', headers=AJAX, content_type='multipart/form-data', data={
            'kind': 'learners', 'csv_file': (BytesIO(csv_bytes), 'learners.csv'),
        })
        body = response.get_json()
        assert body['success'] is True
        assert body['results']['success'] == ['Imported learner: Imani Chege']

    def test_import_rejects_non_csv(self, admin_client):
        response = admin_client.post('/admin/import', headers=AJAX, content_type='multipart/form-data', data={
            'csv_file': (BytesIO(b'x'), 'learners.xlsx'),
        })
        assert response.get_json()['message'] == 'Please upload a CSV file!'

    def test_csv_template_download(self, admin_client):
        response = admin_client.get('/admin/import/template/learners')
        assert response.headers['Content-Type'].startswith('text/csv')
        assert 'learners_template.csv' in response.headers['Content-Disposition']

    def test_rollover(self, admin_client, route_data):
        response = admin_client.post('/admin/rollover', headers=AJAX, data={'new_term': 'Term 3', 'new_year': '2024'})
        assert response.get_json()['summary']['route_count'] == 2
        assert data_store.get_route(route_data['route_a'])['term'] == 'Term 3'

    def test_audit_log_page(self, admin_client, route_data):
        response = admin_client.get('/audit-logs?action=created')
        assert response.status_code == 200
        assert b'System' in response.data


class TestReportViews:

    def test_reports_page_lists_routes(self, admin_client, route_data):
        response = admin_client.get('/reports')
        assert b'Route A' in response.data and b'Route B' in response.data

    def test_driver_sees_only_own_route(self, driver_client, route_data):
        response = driver_client.get('/reports')
        assert b'Route A' in response.data
        assert b'Route B' not in response.data

    def test_preview(self, admin_client, route_data):
        response = admin_client.get(f"/api/reports/preview?route_id={route_data['route_a']}&trip_filter=1")
        body = response.get_json()
        assert body['count'] == 1
        assert body['total'] == 3
        assert body['areas'] == ['Kileleshwa', 'Lavington']
        assert body['classes'] == ['Grade 1', 'Grade 2']

    def test_preview_without_route(self, admin_client):
        response = admin_client.get('/api/reports/preview')
        assert response.status_code == 400
        assert response.get_json()['message'] == 'Please select a route'

    def test_generate_pdf(self, admin_client, route_data):
        response = admin_client.post('/reports/generate', data={'route_id': route_data['route_a'], 'format': 'pdf'})
        assert response.status_code == 200
        assert response.mimetype == 'application/pdf'
        assert response.data.startswith(b'%PDF')
        assert 'Route_A_Route_Report_' in response.headers['Content-Disposition']

    def test_generate_excel_with_filters(self, admin_client, route_data):
        response = admin_client.post('/reports/generate', data={
            'route_id': route_data['route_a'], 'format': 'excel', 'sort_by': 'trip',
            'columns_submitted': '1', 'columns': ['trip', 'pickup_area'],
        })
        assert response.status_code == 200
        assert 'Route_A_Transport_List_' in response.headers['Content-Disposition']

        ws = load_workbook(BytesIO(response.data)).active
        assert [c.value for c in ws[4]] == ['#', 'Name', 'Trip', 'Pickup Area']
        assert [ws.cell(row, 2).value for row in (5, 6, 7)] == ['Amani Otieno', 'Zawadi Njeri', 'Baraka Mwangi']

    def test_empty_selection_is_refused(self, admin_client, route_data):
        response = admin_client.post('/reports/generate', headers=AJAX, data={
            'route_id': route_data['route_a'], 'class_filter': 'Grade 9',
        })
        assert response.status_code == 400
        assert response.get_json() == {'success': False, 'message': 'No learners to include in the report'}

    def test_empty_selection_flashes_without_ajax(self, admin_client, route_data):
        response = admin_client.post('/reports/generate', data={
            'route_id': route_data['route_a'], 'class_filter': 'Grade 9',
        })
        assert response.status_code == 302
        assert response.headers['Location'].endswith('/reports')

    def test_driver_cannot_report_other_route(self, driver_client, route_data):
        response = driver_client.post('/reports/generate', headers=AJAX, data={'route_id': route_data['route_b']})
        assert response.status_code == 400

    def test_unknown_route(self, admin_client):
        response = admin_client.post('/reports/generate', headers=AJAX, data={'route_id': 'nope'})
        assert response.get_json()['message'] == 'Route not found'


class TestErrors:

    def test_not_found_page(self, client):
        response = client.get('/no-such-page')
        assert response.status_code == 404
        assert b'Page not found' in response.data
