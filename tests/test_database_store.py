"""Tests for the database store: CRUD, audit trail, imports and rollover"""
import pytest

import database_store as data_store
from database_store import DuplicateRecordError

ADMIN_ACTOR = {'user_id': 1, 'user_name': 'Administrator', 'user_role': 'admin'}


class TestRoutes:

    def test_create_and_get(self, app):
        route_id = data_store.create_route(' Route C ', vehicle_no=' kbz 001c', areas=['Karen', ' Karen ', '', 'Langata'])
        route = data_store.get_route(route_id)
        assert route['name'] == 'Route C'
        assert route['vehicle_no'] == 'KBZ 001C'
        assert route['areas'] == ['Karen', 'Langata']
        assert route['status'] == 'active'

    def test_duplicate_name(self, app, route_data):
        with pytest.raises(DuplicateRecordError, match='already exists'):
            data_store.create_route('Route A')
        # Session is usable again after the rollback
        assert len(data_store.get_all_routes()) == 2

    def test_delete_detaches_learners_and_staff(self, app, route_data):
        assert data_store.delete_route(route_data['route_a'])
        assert data_store.get_route(route_data['route_a']) is None
        learner = data_store.get_learner(route_data['learners']['Amani Otieno'])
        assert learner['route_id'] is None
        assert data_store.get_driver(route_data['driver_id'])['route_id'] is None

    def test_get_missing_route(self, app):
        assert data_store.get_route('missing') is None
        assert data_store.get_route(None) is None


class TestLearners:

    def test_create_writes_audit_entry(self, app, route_data):
        learner_id = data_store.create_learner(actor=ADMIN_ACTOR, name='Neema Wambui', admission_no='ADM030',
                                               class_name='PP2', route_id=route_data['route_b'])
        learner = data_store.get_learner(learner_id)
        assert learner['trip'] == 1
        assert learner['active'] is True
        entries = [log for log in data_store.get_audit_logs() if log['learner_id'] == learner_id]
        assert [e['action'] for e in entries] == ['created']
        assert entries[0]['user_name'] == 'Administrator'

    def test_duplicate_admission_number(self, app, route_data):
        with pytest.raises(DuplicateRecordError, match='A learner with this admission number already exists'):
            data_store.create_learner(name='Someone Else', admission_no='ADM010')

    def test_invalid_phone_rejected(self, app):
        with pytest.raises(ValueError, match=r'\+254XXXXXXXXX'):
            data_store.create_learner(name='Amani', admission_no='ADM099', father_phone='0712345678')

    def test_update_logs_each_changed_field(self, app, route_data):
        learner_id = route_data['learners']['Amani Otieno']
        assert data_store.update_learner(learner_id, actor=ADMIN_ACTOR, pickup_area='Karen', trip='2',
                                         name='Amani Otieno')
        learner = data_store.get_learner(learner_id)
        assert learner['pickup_area'] == 'Karen'
        assert learner['trip'] == 2

        updates = [log for log in data_store.get_audit_logs()
                   if log['learner_id'] == learner_id and log['action'] == 'updated']
        assert sorted(log['field_name'] for log in updates) == ['pickup_area', 'trip']
        pickup = next(log for log in updates if log['field_name'] == 'pickup_area')
        assert (pickup['old_value'], pickup['new_value']) == ('Kileleshwa', 'Karen')

    def test_update_missing_learner(self, app):
        assert data_store.update_learner('missing', name='x') is False

    def test_deactivate_and_reactivate(self, app, route_data):
        learner_id = route_data['learners']['Zawadi Njeri']
        data_store.set_learner_active(learner_id, False, actor=ADMIN_ACTOR)
        assert data_store.get_learner(learner_id)['active'] is False
        data_store.set_learner_active(learner_id, True, actor=ADMIN_ACTOR)
        assert data_store.get_learner(learner_id)['active'] is True

        actions = {log['action'] for log in data_store.get_audit_logs() if log['learner_id'] == learner_id}
        assert {'deactivated', 'reactivated'} <= actions

    def test_search_learners(self, app, route_data):
        learners = data_store.get_all_learners()
        assert [l['name'] for l in data_store.search_learners(learners, search='adm011')] == ['Amani Otieno']
        assert len(data_store.search_learners(learners, route_id=route_data['route_a'])) == 3
        assert [l['name'] for l in data_store.search_learners(learners, class_name='Grade 1', trip='3')] == \
            ['Baraka Mwangi']


class TestStaffAndVehicles:

    def test_driver_with_password_gets_login(self, app, route_data):
        driver = data_store.get_driver(route_data['driver_id'])
        assert driver['user_id'] is not None
        assert data_store.get_driver_for_user(driver['user_id'])['name'] == 'Peter Kamau'

    def test_duplicate_driver_email(self, app, route_data):
        with pytest.raises(DuplicateRecordError):
            data_store.create_driver('Other', 'DRIVER@lelani.co.ke', password='whatever123')

    def test_driver_and_minder_for_route(self, app, route_data):
        assert data_store.get_driver_for_route(route_data['route_a'])['name'] == 'Peter Kamau'
        assert data_store.get_minder_for_route(route_data['route_a'])['phone'] == '+254722000222'
        assert data_store.get_minder_for_route(route_data['route_b']) is None

    def test_vehicle_registration_upper_case_and_unique(self, app, route_data):
        assert data_store.get_vehicle_by_number('kcb 123a')['capacity'] == 4
        with pytest.raises(DuplicateRecordError):
            data_store.create_vehicle('kcb 123a')


class TestAreas:

    def test_pickup_order_appends(self, app, route_data):
        first = data_store.create_area('Karen', route_data['route_b'])
        second = data_store.create_area('Langata', route_data['route_b'])
        assert data_store.get_area(first)['pickup_order'] == 1
        assert data_store.get_area(second)['pickup_order'] == 2

    def test_move_area(self, app, route_data):
        first = data_store.create_area('Karen', route_data['route_b'])
        second = data_store.create_area('Langata', route_data['route_b'])
        assert data_store.move_area(second, 'up')
        names = [a['name'] for a in data_store.get_all_areas(route_id=route_data['route_b'])]
        assert names == ['Langata', 'Karen']
        assert data_store.move_area(second, 'up') is False
        assert data_store.move_area(first, 'sideways') is False


class TestSettings:

    def test_settings_upsert(self, app):
        assert data_store.get_school_settings() is None
        data_store.save_school_settings('Hillcrest Academy', phone='+254700000000')
        data_store.save_school_settings('Hillcrest Academy Nairobi', website='https://hillcrest.example')
        settings = data_store.get_school_settings()
        assert settings['school_name'] == 'Hillcrest Academy Nairobi'
        assert settings['phone'] == '+254700000000'
        assert settings['website'] == 'https://hillcrest.example'


class TestReportInputs:

    def test_route_areas_used_without_area_records(self, app, route_data):
        inputs = data_store.load_report_inputs(route_data['route_a'])
        assert inputs['route']['name'] == 'Route A'
        assert len(inputs['learners']) == 3
        assert inputs['areas'] == ['Kileleshwa', 'Lavington']
        assert inputs['driver']['name'] == 'Peter Kamau'
        assert inputs['minder']['name'] == 'Grace Achieng'
        assert inputs['settings'] is None

    def test_area_records_win(self, app, route_data):
        data_store.create_area('Upper Hill', route_data['route_a'])
        data_store.create_area('Kilimani', route_data['route_a'])
        assert data_store.load_report_inputs(route_data['route_a'])['areas'] == ['Upper Hill', 'Kilimani']

    def test_unknown_route(self, app):
        assert data_store.load_report_inputs('missing') is None


class TestDashboardAndAnalytics:

    def test_admin_stats(self, app, route_data):
        stats = data_store.get_dashboard_stats({'role': 'admin'})
        assert stats['total_learners'] == 4
        assert stats['total_routes'] == 2
        assert stats['route_name'] == 'All Routes'

    def test_driver_stats(self, app, route_data):
        stats = data_store.get_dashboard_stats(data_store.get_driver(route_data['driver_id']))
        assert stats['route_name'] == 'Route A'
        assert stats['total_learners'] == 3
        assert stats['total_areas'] == 2

    def test_capacity_utilisation(self, app, route_data):
        analytics = data_store.get_analytics()
        capacity = {row['route_name']: row for row in analytics['capacity']}
        assert capacity['Route A']['learner_count'] == 3
        assert capacity['Route A']['utilization'] == 75
        assert capacity['Route B']['utilization'] == 0

        stats = {row['route_name']: row for row in analytics['route_stats']}
        assert stats['Route A']['has_driver'] and stats['Route A']['has_minder']
        assert not stats['Route B']['has_driver']

        assert analytics['trip_distribution'] == [
            {'trip': 1, 'count': 2}, {'trip': 2, 'count': 1}, {'trip': 3, 'count': 1},
        ]


class TestAuditLogFilter:

    def test_filter_by_user_and_action(self):
        logs = [
            {'user_name': 'Peter Kamau', 'field_name': 'pickup_area', 'action': 'updated'},
            {'user_name': 'Administrator', 'field_name': '', 'action': 'created'},
            {'user_name': 'Administrator', 'field_name': 'active', 'action': 'deactivated'},
        ]
        assert len(data_store.filter_audit_logs(logs, search='peter')) == 1
        assert len(data_store.filter_audit_logs(logs, search='PICKUP')) == 1
        assert len(data_store.filter_audit_logs(logs, search='admin', action='created')) == 1
        assert len(data_store.filter_audit_logs(logs)) == 3


class TestCsvImport:

    def test_learner_import(self, app, route_data):
        csv_content = (
            'Name,Admission No,Class,Trip,Route,Pickup Area,Father Phone\n'
            'Imani Chege,ADM100,Grade 5,2,route a,Kileleshwa,+254712000001\n'
            'Bad Phone,ADM101,Grade 5,1,Route A,Kileleshwa,0712000001\n'
            'Lost Child,ADM102,Grade 5,1,Route Z,Somewhere,\n'
            ',,,,,,\n'
        )
        results = data_store.process_learners_csv(csv_content, actor=ADMIN_ACTOR)
        assert results['success'] == ['Imported learner: Imani Chege']
        assert len(results['errors']) == 2
        assert results['errors'][0].startswith('Row 3:')
        assert 'Route Z' in results['errors'][1]

        imported = [l for l in data_store.get_all_learners() if l['admission_no'] == 'ADM100'][0]
        assert imported['route_id'] == route_data['route_a']
        assert imported['trip'] == 2

    def test_first_and_last_name_columns(self, app):
        results = data_store.process_learners_csv('First Name,Last Name,Adm No\nAmina,Hassan,ADM200\n')
        assert results['success'] == ['Imported learner: Amina Hassan']

    def test_empty_file(self, app):
        results = data_store.process_learners_csv('Name,Admission No\n')
        assert results['success'] == []
        assert results['errors'] == ['No valid learner records found in the file']

    def test_area_import(self, app, route_data):
        results = data_store.process_areas_csv('Name,Route,Pickup Order\nKaren,Route B,2\nNowhere,Route Q,1\n')
        assert results['success'] == ['Imported area: Karen']
        assert len(results['errors']) == 1
        assert data_store.get_all_areas(route_id=route_data['route_b'])[0]['pickup_order'] == 2

    def test_templates_have_headers(self):
        assert data_store.create_learners_csv_template().splitlines()[0].startswith('Name,Admission No,Class')
        assert data_store.create_areas_csv_template().splitlines()[0] == 'Name,Route,Pickup Order'


class TestRollover:

    def test_rollover_keeps_learners(self, app, route_data):
        summary = data_store.run_rollover('Term 1', 2025, actor=ADMIN_ACTOR)
        assert summary['previous_term'] == 'Term 2'
        assert summary['previous_year'] == 2024
        assert summary['route_count'] == 2
        assert data_store.get_route(route_data['route_a'])['year'] == 2025
        assert len(data_store.get_all_learners()) == 4
        assert any(log['action'] == 'rollover' for log in data_store.get_audit_logs())

    def test_rollover_clears_learners(self, app, route_data):
        summary = data_store.run_rollover('Term 1', 2025, clear_learners=True, archive_current=False)
        assert summary['learner_count'] == 4
        assert data_store.get_all_learners() == []
        assert not any(log['action'] == 'rollover' for log in data_store.get_audit_logs())

    def test_deactivate_graduates(self, app, route_data):
        assert data_store.deactivate_graduates(['Grade 1', ' ']) == 2
        grade_one = [l for l in data_store.get_all_learners() if l['class_name'] == 'Grade 1']
        assert not any(l['active'] for l in grade_one)
        assert data_store.deactivate_graduates(['Grade 1']) == 0
