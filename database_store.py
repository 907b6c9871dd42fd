"""
Database-backed data store for the school transport management system.
This module provides CRUD operations over the SQLAlchemy models and returns
plain dictionaries, so views and reports never hold ORM objects.
"""

from app import db
from models import (
    User, Route, Driver, Minder, Vehicle, Area, Grade, Learner, SchoolSettings, AuditLog
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime
from collections import Counter
import validators
import uuid
import logging
import io
import csv

logger = logging.getLogger(__name__)

ROUTE_STATUS_ACTIVE = 'active'
ROUTE_STATUS_ARCHIVED = 'archived'

AUDIT_ACTIONS = ('created', 'updated', 'deactivated', 'reactivated', 'rollover')
AUDIT_LOG_LIMIT = 500

# Learner fields tracked in the audit log, with their display names
AUDITED_LEARNER_FIELDS = (
    'name', 'admission_no', 'class_name', 'route_id', 'trip', 'pickup_area', 'pickup_time',
    'dropoff_area', 'drop_time', 'father_phone', 'mother_phone', 'house_help_phone',
)

SYSTEM_ACTOR = {'user_id': None, 'user_name': 'System', 'user_role': 'system'}


class DuplicateRecordError(ValueError):
    """A unique field (admission number, route name, ...) is already taken"""


def _new_id():
    return str(uuid.uuid4())


def _commit(duplicate_message):
    """Commit the session, translating constraint violations for the caller"""
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning(f"Integrity error on commit: {e.orig}")
        raise DuplicateRecordError(duplicate_message) from e
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Database error on commit")
        raise


def _apply_updates(record, updates, allowed):
    for key, value in updates.items():
        if key in allowed and hasattr(record, key):
            setattr(record, key, value)


def _blank_to_none(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


# Database operations for routes
def _route_dict(route):
    return {
        'id': route.id,
        'name': route.name,
        'vehicle_no': route.vehicle_no or '',
        'areas': list(route.areas or []),
        'term': route.term or '',
        'year': route.year,
        'status': route.status,
    }

def get_all_routes(status=None):
    """Get routes ordered by name as dictionary"""
    query = Route.query
    if status:
        query = query.filter_by(status=status)
    return {route.id: _route_dict(route) for route in query.order_by(Route.name).all()}

def get_route(route_id):
    """Get a single route"""
    if not route_id:
        return None
    route = db.session.get(Route, route_id)
    return _route_dict(route) if route else None

def create_route(name, vehicle_no='', areas=None, term='Term 1', year=None, status=ROUTE_STATUS_ACTIVE):
    """Create a new route"""
    route_id = _new_id()
    route = Route(
        id=route_id,
        name=name.strip(),
        vehicle_no=(vehicle_no or '').strip().upper(),
        areas=_clean_area_list(areas),
        term=term or 'Term 1',
        year=year or datetime.now().year,
        status=status or ROUTE_STATUS_ACTIVE
    )
    db.session.add(route)
    _commit(f'A route named "{name}" already exists')
    logger.info(f"Created route: {name} ({route_id})")
    return route_id

def update_route(route_id, **updates):
    """Update route information"""
    route = db.session.get(Route, route_id)
    if not route:
        return False
    if 'areas' in updates:
        updates['areas'] = _clean_area_list(updates['areas'])
    if 'vehicle_no' in updates:
        updates['vehicle_no'] = (updates['vehicle_no'] or '').strip().upper()
    _apply_updates(route, updates, ('name', 'vehicle_no', 'areas', 'term', 'year', 'status'))
    _commit(f'A route named "{route.name}" already exists')
    logger.info(f"Updated route {route_id}: {updates}")
    return True

def delete_route(route_id):
    """Delete a route, detaching everything that referenced it"""
    route = db.session.get(Route, route_id)
    if not route:
        return False
    for model in (Learner, Driver, Minder, Vehicle):
        model.query.filter_by(route_id=route_id).update({'route_id': None})
    Area.query.filter_by(route_id=route_id).delete()
    db.session.delete(route)
    _commit('Route could not be deleted')
    logger.info(f"Deleted route {route_id}")
    return True

def _clean_area_list(areas):
    """Trimmed, de-duplicated area names in their given order"""
    cleaned = []
    for area in areas or []:
        area = (area or '').strip()
        if area and area not in cleaned:
            cleaned.append(area)
    return cleaned


# Database operations for learners
def _learner_dict(learner):
    return {
        'id': learner.id,
        'name': learner.name,
        'admission_no': learner.admission_no,
        'class_name': learner.class_name or '',
        'class': learner.class_name or '',  # Include both for compatibility
        'route_id': learner.route_id,
        'trip': learner.trip or 1,
        'pickup_area': learner.pickup_area or '',
        'pickup_time': learner.pickup_time or '',
        'dropoff_area': learner.dropoff_area or '',
        'drop_time': learner.drop_time or '',
        'father_phone': learner.father_phone or '',
        'mother_phone': learner.mother_phone or '',
        'house_help_phone': learner.house_help_phone or '',
        'active': bool(learner.active),
    }

def get_all_learners(route_id=None):
    """Get learners ordered by name, optionally for one route"""
    query = Learner.query
    if route_id:
        query = query.filter_by(route_id=route_id)
    return [_learner_dict(learner) for learner in query.order_by(Learner.name).all()]

def get_learners_for_route(route_id):
    return get_all_learners(route_id=route_id)

def get_learner(learner_id):
    """Get a single learner"""
    learner = db.session.get(Learner, learner_id) if learner_id else None
    return _learner_dict(learner) if learner else None

def _learner_values(fields):
    values = {
        'name': (fields.get('name') or '').strip(),
        'admission_no': (fields.get('admission_no') or '').strip(),
        'class_name': _blank_to_none(fields.get('class_name', fields.get('class'))),
        'route_id': _blank_to_none(fields.get('route_id')),
        'pickup_area': _blank_to_none(fields.get('pickup_area')),
        'pickup_time': _blank_to_none(fields.get('pickup_time')),
        'dropoff_area': _blank_to_none(fields.get('dropoff_area')),
        'drop_time': _blank_to_none(fields.get('drop_time')),
        'father_phone': _blank_to_none(fields.get('father_phone')),
        'mother_phone': _blank_to_none(fields.get('mother_phone')),
        'house_help_phone': _blank_to_none(fields.get('house_help_phone')),
    }
    try:
        values['trip'] = int(fields.get('trip') or 1)
    except (TypeError, ValueError):
        raise ValueError('Trip must be a number')
    return values

def create_learner(actor=None, **fields):
    """Create a new learner and record it in the audit log"""
    values = _learner_values(fields)
    is_valid, error_msg = validators.validate_learner(values)
    if not is_valid:
        raise ValueError(error_msg)

    learner_id = _new_id()
    learner = Learner(id=learner_id, active=bool(fields.get('active', True)), **values)
    db.session.add(learner)
    _add_audit_entry(actor, 'created', learner_id=learner_id)
    _commit('A learner with this admission number already exists')
    logger.info(f"Created learner: {values['name']} ({learner_id})")
    return learner_id

def update_learner(learner_id, actor=None, **updates):
    """Update learner details, logging one audit entry per changed field"""
    learner = db.session.get(Learner, learner_id)
    if not learner:
        return False

    current = _learner_dict(learner)
    merged = dict(current)
    merged.update(updates)
    values = _learner_values(merged)
    is_valid, error_msg = validators.validate_learner(values)
    if not is_valid:
        raise ValueError(error_msg)

    for field in AUDITED_LEARNER_FIELDS:
        old_value = getattr(learner, field)
        new_value = values[field]
        if (old_value or None) != (new_value or None):
            setattr(learner, field, new_value)
            _add_audit_entry(actor, 'updated', learner_id=learner_id, field_name=field,
                             old_value=old_value, new_value=new_value)

    if 'active' in updates and bool(updates['active']) != bool(learner.active):
        learner.active = bool(updates['active'])
        _add_audit_entry(actor, 'reactivated' if learner.active else 'deactivated', learner_id=learner_id,
                         field_name='active', old_value=not learner.active, new_value=learner.active)

    _commit('A learner with this admission number already exists')
    logger.info(f"Updated learner {learner_id}")
    return True

def set_learner_active(learner_id, active, actor=None):
    """Deactivate or reactivate a learner; learners are never deleted here"""
    learner = db.session.get(Learner, learner_id)
    if not learner:
        return False
    if bool(learner.active) == bool(active):
        return True
    learner.active = bool(active)
    _add_audit_entry(actor, 'reactivated' if active else 'deactivated', learner_id=learner_id,
                     field_name='active', old_value=not active, new_value=bool(active))
    _commit('Learner status could not be changed')
    logger.info(f"{'Reactivated' if active else 'Deactivated'} learner {learner_id}")
    return True

def search_learners(learners, search='', route_id=None, status=None, class_name=None, trip=None):
    """Learner list page filters: free text over name/class/admission number plus exact filters"""
    term = (search or '').strip().lower()
    results = []
    for learner in learners:
        if term and not any(term in (learner.get(f) or '').lower()
                            for f in ('name', 'class_name', 'admission_no')):
            continue
        if route_id and learner.get('route_id') != route_id:
            continue
        if status == 'active' and not learner['active']:
            continue
        if status == 'inactive' and learner['active']:
            continue
        if class_name and learner.get('class_name') != class_name:
            continue
        if trip and str(learner.get('trip')) != str(trip):
            continue
        results.append(learner)
    return results

def get_unique_class_names(learners=None):
    """Sorted distinct class names"""
    learners = get_all_learners() if learners is None else learners
    return sorted({l['class_name'] for l in learners if l.get('class_name')})


# Database operations for drivers
def _driver_dict(driver):
    return {
        'id': driver.id,
        'user_id': driver.user_id,
        'name': driver.name,
        'email': driver.email,
        'phone': driver.phone or '',
        'route_id': driver.route_id,
        'role': driver.role,
        'status': driver.status,
        'photo_url': driver.photo_url or '',
    }

def get_all_drivers():
    """Get all drivers ordered by name as dictionary"""
    return {d.id: _driver_dict(d) for d in Driver.query.order_by(Driver.name).all()}

def get_driver(driver_id):
    driver = db.session.get(Driver, driver_id) if driver_id else None
    return _driver_dict(driver) if driver else None

def get_driver_for_user(user_id):
    """Driver profile of a login account"""
    driver = Driver.query.filter_by(user_id=user_id).first()
    return _driver_dict(driver) if driver else None

def get_driver_for_route(route_id):
    """First driver assigned to a route"""
    driver = Driver.query.filter_by(route_id=route_id, role='driver').order_by(Driver.name).first()
    if not driver:
        driver = Driver.query.filter_by(route_id=route_id).order_by(Driver.name).first()
    return _driver_dict(driver) if driver else None

def create_driver(name, email, phone='', route_id=None, role='driver', status='active', password=None):
    """Create a driver profile, with a login account when a password is given"""
    email = (email or '').strip().lower()
    user_id = None
    if password:
        user = User(email=email)
        user.set_password(password)
        db.session.add(user)
        try:
            db.session.flush()
        except IntegrityError as e:
            db.session.rollback()
            raise DuplicateRecordError('An account with this email already exists') from e
        user_id = user.id

    driver_id = _new_id()
    driver = Driver(
        id=driver_id,
        user_id=user_id,
        name=name.strip(),
        email=email,
        phone=(phone or '').strip(),
        route_id=route_id or None,
        role=role or 'driver',
        status=status or 'active'
    )
    db.session.add(driver)
    _commit('A driver with this email already exists')
    logger.info(f"Created driver: {name} ({driver_id}) role={role}")
    return driver_id

def update_driver(driver_id, **updates):
    """Update driver information"""
    driver = db.session.get(Driver, driver_id)
    if not driver:
        return False
    if 'route_id' in updates:
        updates['route_id'] = updates['route_id'] or None
    if 'email' in updates:
        updates['email'] = (updates['email'] or '').strip().lower()
    _apply_updates(driver, updates, ('name', 'email', 'phone', 'route_id', 'role', 'status', 'photo_url'))
    if driver.user and 'email' in updates:
        driver.user.email = driver.email
    if driver.user and 'status' in updates:
        driver.user.active = driver.status == 'active'
    _commit('A driver with this email already exists')
    logger.info(f"Updated driver {driver_id}")
    return True

def delete_driver(driver_id):
    """Delete a driver profile and its login account"""
    driver = db.session.get(Driver, driver_id)
    if not driver:
        return False
    user = driver.user
    Minder.query.filter_by(driver_id=driver_id).update({'driver_id': None})
    db.session.delete(driver)
    if user:
        db.session.delete(user)
    _commit('Driver could not be deleted')
    logger.info(f"Deleted driver {driver_id}")
    return True


# Database operations for minders
def _minder_dict(minder):
    return {
        'id': minder.id,
        'name': minder.name,
        'phone': minder.phone or '',
        'driver_id': minder.driver_id,
        'route_id': minder.route_id,
    }

def get_all_minders():
    return {m.id: _minder_dict(m) for m in Minder.query.order_by(Minder.name).all()}

def get_minder_for_route(route_id):
    minder = Minder.query.filter_by(route_id=route_id).order_by(Minder.name).first()
    return _minder_dict(minder) if minder else None

def create_minder(name, phone, driver_id=None, route_id=None):
    """Create a new minder"""
    minder_id = _new_id()
    minder = Minder(
        id=minder_id,
        name=name.strip(),
        phone=phone.strip(),
        driver_id=driver_id or None,
        route_id=route_id or None
    )
    db.session.add(minder)
    _commit('Minder could not be saved')
    logger.info(f"Created minder: {name} ({minder_id})")
    return minder_id

def update_minder(minder_id, **updates):
    minder = db.session.get(Minder, minder_id)
    if not minder:
        return False
    for key in ('driver_id', 'route_id'):
        if key in updates:
            updates[key] = updates[key] or None
    _apply_updates(minder, updates, ('name', 'phone', 'driver_id', 'route_id'))
    _commit('Minder could not be saved')
    logger.info(f"Updated minder {minder_id}")
    return True

def delete_minder(minder_id):
    minder = db.session.get(Minder, minder_id)
    if not minder:
        return False
    db.session.delete(minder)
    _commit('Minder could not be deleted')
    logger.info(f"Deleted minder {minder_id}")
    return True


# Database operations for vehicles
def _vehicle_dict(vehicle):
    return {
        'id': vehicle.id,
        'vehicle_no': vehicle.vehicle_no,
        'make': vehicle.make or '',
        'model': vehicle.model or '',
        'year': vehicle.year,
        'color': vehicle.color or '',
        'capacity': vehicle.capacity or 0,
        'image_url': vehicle.image_url or '',
        'status': vehicle.status,
        'route_id': vehicle.route_id,
    }

def get_all_vehicles():
    return {v.id: _vehicle_dict(v) for v in Vehicle.query.order_by(Vehicle.vehicle_no).all()}

def get_vehicle_by_number(vehicle_no):
    vehicle = Vehicle.query.filter_by(vehicle_no=(vehicle_no or '').strip().upper()).first()
    return _vehicle_dict(vehicle) if vehicle else None

def create_vehicle(vehicle_no, make=None, model=None, year=None, color=None, capacity=14,
                   image_url=None, status='active', route_id=None):
    """Create a new vehicle; registration numbers are stored upper case"""
    vehicle_id = _new_id()
    vehicle = Vehicle(
        id=vehicle_id,
        vehicle_no=vehicle_no.strip().upper(),
        make=_blank_to_none(make),
        model=_blank_to_none(model),
        year=year or None,
        color=_blank_to_none(color),
        capacity=capacity or 14,
        image_url=_blank_to_none(image_url),
        status=status or 'active',
        route_id=route_id or None
    )
    db.session.add(vehicle)
    _commit(f'A vehicle with registration {vehicle.vehicle_no} already exists')
    logger.info(f"Created vehicle: {vehicle.vehicle_no} ({vehicle_id})")
    return vehicle_id

def update_vehicle(vehicle_id, **updates):
    vehicle = db.session.get(Vehicle, vehicle_id)
    if not vehicle:
        return False
    if 'vehicle_no' in updates:
        updates['vehicle_no'] = (updates['vehicle_no'] or '').strip().upper()
    if 'route_id' in updates:
        updates['route_id'] = updates['route_id'] or None
    _apply_updates(vehicle, updates,
                   ('vehicle_no', 'make', 'model', 'year', 'color', 'capacity', 'image_url', 'status', 'route_id'))
    _commit(f'A vehicle with registration {vehicle.vehicle_no} already exists')
    logger.info(f"Updated vehicle {vehicle_id}")
    return True

def delete_vehicle(vehicle_id):
    vehicle = db.session.get(Vehicle, vehicle_id)
    if not vehicle:
        return False
    db.session.delete(vehicle)
    _commit('Vehicle could not be deleted')
    logger.info(f"Deleted vehicle {vehicle_id}")
    return True


# Database operations for areas
def _area_dict(area):
    return {
        'id': area.id,
        'name': area.name,
        'route_id': area.route_id,
        'pickup_order': area.pickup_order or 0,
    }

def get_all_areas(route_id=None):
    """Get areas in pickup order, optionally for one route"""
    query = Area.query
    if route_id:
        query = query.filter_by(route_id=route_id)
    areas = query.order_by(Area.route_id, Area.pickup_order, Area.name).all()
    return [_area_dict(area) for area in areas]

def get_area(area_id):
    area = db.session.get(Area, area_id) if area_id else None
    return _area_dict(area) if area else None

def create_area(name, route_id, pickup_order=None):
    """Create a new area at the end of the route's pickup order unless told otherwise"""
    if pickup_order is None:
        last = Area.query.filter_by(route_id=route_id).order_by(Area.pickup_order.desc()).first()
        pickup_order = (last.pickup_order or 0) + 1 if last else 1
    area_id = _new_id()
    area = Area(id=area_id, name=name.strip(), route_id=route_id, pickup_order=pickup_order)
    db.session.add(area)
    _commit('Area could not be saved')
    logger.info(f"Created area: {name} ({area_id})")
    return area_id

def update_area(area_id, **updates):
    """Update area information"""
    area = db.session.get(Area, area_id)
    if not area:
        return False
    _apply_updates(area, updates, ('name', 'route_id', 'pickup_order'))
    _commit('Area could not be saved')
    logger.info(f"Updated area {area_id}")
    return True

def delete_area(area_id):
    """Delete an area"""
    area = db.session.get(Area, area_id)
    if not area:
        return False
    db.session.delete(area)
    _commit('Area could not be deleted')
    logger.info(f"Deleted area {area_id}")
    return True

def move_area(area_id, direction):
    """Swap an area with its neighbour in the route's pickup order"""
    area = db.session.get(Area, area_id)
    if not area or direction not in ('up', 'down'):
        return False
    siblings = Area.query.filter_by(route_id=area.route_id).order_by(Area.pickup_order, Area.name).all()
    position = siblings.index(area)
    target = position - 1 if direction == 'up' else position + 1
    if target < 0 or target >= len(siblings):
        return False

    siblings[position], siblings[target] = siblings[target], siblings[position]
    for order, sibling in enumerate(siblings, start=1):
        sibling.pickup_order = order
    _commit('Areas could not be reordered')
    logger.info(f"Moved area {area_id} {direction}")
    return True


# Database operations for grades
def get_all_grades():
    grades = Grade.query.order_by(Grade.sort_order, Grade.name).all()
    return [{'id': g.id, 'name': g.name, 'sort_order': g.sort_order or 0} for g in grades]

def create_grade(name, sort_order=None):
    if sort_order is None:
        sort_order = Grade.query.count() + 1
    grade_id = _new_id()
    db.session.add(Grade(id=grade_id, name=name.strip(), sort_order=sort_order))
    _commit(f'Grade "{name}" already exists')
    logger.info(f"Created grade: {name} ({grade_id})")
    return grade_id

def update_grade(grade_id, **updates):
    grade = db.session.get(Grade, grade_id)
    if not grade:
        return False
    _apply_updates(grade, updates, ('name', 'sort_order'))
    _commit(f'Grade "{grade.name}" already exists')
    logger.info(f"Updated grade {grade_id}")
    return True

def delete_grade(grade_id):
    grade = db.session.get(Grade, grade_id)
    if not grade:
        return False
    db.session.delete(grade)
    _commit('Grade could not be deleted')
    logger.info(f"Deleted grade {grade_id}")
    return True


# School settings (single row)
def get_school_settings():
    """School settings as dictionary, or None before they are first saved"""
    settings = SchoolSettings.query.first()
    if not settings:
        return None
    return {
        'id': settings.id,
        'school_name': settings.school_name,
        'phone': settings.phone or '',
        'email': settings.email or '',
        'website': settings.website or '',
        'address': settings.address or '',
        'logo_url': settings.logo_url or '',
    }

def save_school_settings(school_name, **fields):
    """Create or update the school settings row"""
    settings = SchoolSettings.query.first()
    if not settings:
        settings = SchoolSettings(id=_new_id(), school_name=school_name.strip())
        db.session.add(settings)
    settings.school_name = school_name.strip()
    for key in ('phone', 'email', 'website', 'address', 'logo_url'):
        if key in fields:
            setattr(settings, key, _blank_to_none(fields[key]))
    _commit('School settings could not be saved')
    logger.info(f"Saved school settings for {settings.school_name}")
    return get_school_settings()


# Audit log
def _add_audit_entry(actor, action, learner_id=None, field_name=None, old_value=None, new_value=None):
    actor = actor or SYSTEM_ACTOR
    entry = AuditLog(
        id=_new_id(),
        learner_id=learner_id,
        user_id=actor.get('user_id'),
        user_name=actor.get('user_name') or 'Unknown',
        user_role=actor.get('user_role') or 'driver',
        action=action,
        field_name=field_name,
        old_value=None if old_value is None else str(old_value),
        new_value=None if new_value is None else str(new_value),
        timestamp=datetime.now()
    )
    db.session.add(entry)
    return entry

def log_audit(actor, action, **details):
    """Write a standalone audit entry"""
    if action not in AUDIT_ACTIONS:
        raise ValueError(f'Unknown audit action: {action}')
    _add_audit_entry(actor, action, **details)
    _commit('Audit entry could not be saved')

def get_audit_logs(limit=AUDIT_LOG_LIMIT):
    """Newest audit entries first"""
    logs = AuditLog.query.order_by(AuditLog.timestamp.desc()).limit(limit).all()
    return [{
        'id': log.id,
        'learner_id': log.learner_id,
        'user_id': log.user_id,
        'user_name': log.user_name,
        'user_role': log.user_role,
        'action': log.action,
        'field_name': log.field_name or '',
        'old_value': log.old_value,
        'new_value': log.new_value,
        'timestamp': log.timestamp,
    } for log in logs]

def filter_audit_logs(logs, search='', action=''):
    """Case-insensitive search over user and field names plus an exact action filter"""
    term = (search or '').strip().lower()
    results = []
    for log in logs:
        if term and term not in (log.get('user_name') or '').lower() \
                and term not in (log.get('field_name') or '').lower():
            continue
        if action and log.get('action') != action:
            continue
        results.append(log)
    return results


# Dashboard and analytics
def get_dashboard_stats(profile):
    """Admin totals, or the figures for a driver's own route"""
    if profile and profile.get('role') == 'admin':
        learners = get_all_learners()
        return {
            'total_learners': len(learners),
            'active_learners': sum(1 for l in learners if l['active']),
            'total_areas': Area.query.count(),
            'route_name': 'All Routes',
            'total_routes': Route.query.filter_by(status=ROUTE_STATUS_ACTIVE).count(),
            'total_drivers': Driver.query.count(),
            'total_minders': Minder.query.count(),
        }

    route = get_route(profile.get('route_id')) if profile else None
    if not route:
        return {'total_learners': 0, 'active_learners': 0, 'total_areas': 0, 'route_name': '-'}

    learners = get_learners_for_route(route['id'])
    return {
        'total_learners': len(learners),
        'active_learners': sum(1 for l in learners if l['active']),
        'total_areas': len(route['areas']),
        'route_name': route['name'],
        'minder': get_minder_for_route(route['id']),
    }

def get_analytics():
    """Capacity use, per-route staffing and learner distributions for active routes"""
    routes = list(get_all_routes(status=ROUTE_STATUS_ACTIVE).values())
    learners = get_all_learners()
    vehicles = {v['vehicle_no']: v for v in get_all_vehicles().values()}
    drivers = list(get_all_drivers().values())
    minders = list(get_all_minders().values())
    active_learners = [l for l in learners if l['active']]

    capacity = []
    route_stats = []
    for route in routes:
        vehicle = vehicles.get((route['vehicle_no'] or '').upper())
        vehicle_capacity = vehicle['capacity'] if vehicle else 0
        learner_count = sum(1 for l in active_learners if l['route_id'] == route['id'])
        capacity.append({
            'route_name': route['name'],
            'vehicle_capacity': vehicle_capacity,
            'learner_count': learner_count,
            'utilization': round(learner_count / vehicle_capacity * 100) if vehicle_capacity else 0,
        })
        route_stats.append({
            'route_id': route['id'],
            'route_name': route['name'],
            'learner_count': sum(1 for l in learners if l['route_id'] == route['id']),
            'area_count': len(route['areas']),
            'has_driver': any(d['route_id'] == route['id'] for d in drivers),
            'has_minder': any(m['route_id'] == route['id'] for m in minders),
        })

    trip_counts = Counter(l['trip'] for l in active_learners)
    class_counts = Counter(l['class_name'] for l in learners if l['class_name'])
    area_counts = Counter(l['pickup_area'] for l in learners if l['pickup_area'])

    return {
        'capacity': capacity,
        'route_stats': route_stats,
        'trip_distribution': [{'trip': trip, 'count': trip_counts.get(trip, 0)} for trip in (1, 2, 3)],
        'class_distribution': [{'class': c, 'count': n} for c, n in class_counts.most_common(10)],
        'area_distribution': [{'area': a, 'count': n} for a, n in area_counts.most_common(10)],
    }


# Report inputs
def load_report_inputs(route_id):
    """Everything a route report needs, as plain records"""
    route = get_route(route_id)
    if not route:
        return None
    area_names = [a['name'] for a in get_all_areas(route_id=route_id)] or route['areas']
    return {
        'route': route,
        'learners': get_learners_for_route(route_id),
        'settings': get_school_settings(),
        'driver': get_driver_for_route(route_id),
        'minder': get_minder_for_route(route_id),
        'areas': area_names,
    }


# Year-end rollover
def run_rollover(new_term, new_year, clear_learners=False, archive_current=True, actor=None):
    """Move active routes to a new term, optionally clearing all learners"""
    routes = Route.query.filter_by(status=ROUTE_STATUS_ACTIVE).all()
    learner_count = Learner.query.count()
    previous = routes[0] if routes else None
    summary = {
        'previous_term': previous.term if previous else None,
        'previous_year': previous.year if previous else None,
        'new_term': new_term,
        'new_year': new_year,
        'learners_cleared': bool(clear_learners),
        'learner_count': learner_count,
        'route_count': len(routes),
    }

    for route in routes:
        route.term = new_term
        route.year = new_year
    if clear_learners:
        Learner.query.delete()
    if archive_current:
        _add_audit_entry(actor, 'rollover', field_name='term',
                         old_value=f"{summary['previous_term']} {summary['previous_year']}",
                         new_value=f"{new_term} {new_year}")
    _commit('Rollover could not be completed')
    logger.info(f"Rollover to {new_term} {new_year}: {summary}")
    return summary

def deactivate_graduates(class_names, actor=None):
    """Deactivate every active learner in the given classes"""
    classes = [c.strip() for c in class_names if c and c.strip()]
    if not classes:
        return 0
    learners = Learner.query.filter(Learner.class_name.in_(classes), Learner.active.is_(True)).all()
    for learner in learners:
        learner.active = False
        _add_audit_entry(actor, 'deactivated', learner_id=learner.id, field_name='active',
                         old_value=True, new_value=False)
    _commit('Learners could not be deactivated')
    logger.info(f"Deactivated {len(learners)} learners in classes {classes}")
    return len(learners)


# CSV import
LEARNER_CSV_HEADERS = ['Name', 'Admission No', 'Class', 'Trip', 'Route', 'Pickup Area', 'Pickup Time',
                       'Dropoff Area', 'Drop Time', 'Father Phone', 'Mother Phone', 'House Help Phone']
AREA_CSV_HEADERS = ['Name', 'Route', 'Pickup Order']

def create_learners_csv_template():
    """Create a CSV template for learners"""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(LEARNER_CSV_HEADERS)
    writer.writerow(['Amani Wanjiru', 'ADM001', 'Grade 4', '1', 'Route A', 'Kileleshwa', '06:45',
                     'Kileleshwa', '16:30', '+254712345678', '+254723456789', ''])
    writer.writerow(['Brian Otieno', 'ADM002', 'PP2', '2', 'Route A', 'Lavington', '07:10',
                     '', '', '+254734567890', '', ''])
    return output.getvalue()

def create_areas_csv_template():
    """Create a CSV template for areas"""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(AREA_CSV_HEADERS)
    writer.writerow(['Kileleshwa', 'Route A', '1'])
    writer.writerow(['Lavington', 'Route A', '2'])
    return output.getvalue()

def _normalise_header(header):
    return (header or '').strip().strip('"').lower().replace(' ', '_')

def _read_csv_rows(csv_content):
    reader = csv.DictReader(io.StringIO(csv_content))
    rows = []
    for row in reader:
        cleaned = {_normalise_header(k): (v or '').strip() for k, v in row.items() if k is not None}
        if any(cleaned.values()):
            rows.append(cleaned)
    return rows

def _first(row, *keys):
    for key in keys:
        if row.get(key):
            return row[key]
    return ''

def _route_lookup():
    return {route.name.lower(): route.id for route in Route.query.all()}

def process_learners_csv(csv_content, actor=None):
    """Import learners from CSV content, one result line per row"""
    results = {'success': [], 'errors': []}
    rows = _read_csv_rows(csv_content)
    routes = _route_lookup()

    for row_num, row in enumerate(rows, start=2):  # Start at 2 because header is row 1
        name = _first(row, 'name', 'learner_name') or \
            f"{row.get('first_name', '')} {row.get('last_name', '')}".strip()
        route_name = _first(row, 'route', 'route_name')
        route_id = routes.get(route_name.lower()) if route_name else None
        if route_name and not route_id:
            results['errors'].append(f'Row {row_num}: route "{route_name}" not found')
            continue

        fields = {
            'name': name,
            'admission_no': _first(row, 'admission_no', 'adm_no', 'admission_number'),
            'class_name': _first(row, 'class', 'grade', 'class_name'),
            'trip': _first(row, 'trip') or 1,
            'route_id': route_id,
            'pickup_area': _first(row, 'pickup_area', 'area', 'location'),
            'pickup_time': _first(row, 'pickup_time'),
            'dropoff_area': _first(row, 'dropoff_area', 'drop_area'),
            'drop_time': _first(row, 'drop_time', 'dropoff_time'),
            'father_phone': _first(row, 'father_phone', 'guardian_phone', 'parent_phone', 'phone'),
            'mother_phone': _first(row, 'mother_phone'),
            'house_help_phone': _first(row, 'house_help_phone', 'house_help'),
        }
        try:
            create_learner(actor=actor, **fields)
            results['success'].append(f'Imported learner: {name}')
        except ValueError as e:
            results['errors'].append(f'Row {row_num}: {e}')

    if not results['success'] and not results['errors']:
        results['errors'].append('No valid learner records found in the file')
    logger.info(f"Learner import: {len(results['success'])} imported, {len(results['errors'])} errors")
    return results

def process_areas_csv(csv_content):
    """Import areas from CSV content; route names must match existing routes"""
    results = {'success': [], 'errors': []}
    rows = _read_csv_rows(csv_content)
    routes = _route_lookup()

    for row_num, row in enumerate(rows, start=2):
        name = _first(row, 'name', 'area_name', 'area')
        route_name = _first(row, 'route', 'route_name')
        route_id = routes.get(route_name.lower()) if route_name else None
        if not name or not route_id:
            results['errors'].append(f'Row {row_num}: area name and an existing route are required')
            continue
        try:
            order = int(_first(row, 'pickup_order', 'order'))
        except ValueError:
            order = row_num - 1
        try:
            create_area(name, route_id, pickup_order=order)
            results['success'].append(f'Imported area: {name}')
        except ValueError as e:
            results['errors'].append(f'Row {row_num}: {e}')

    if not results['success'] and not results['errors']:
        results['errors'].append('No valid area records found. Make sure route names match existing routes.')
    logger.info(f"Area import: {len(results['success'])} imported, {len(results['errors'])} errors")
    return results
