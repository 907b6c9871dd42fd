from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash

from app import db
from flask_login import UserMixin


class User(UserMixin, db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def set_password(self, password):
        """Set password hash"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Check if provided password matches hash"""
        return check_password_hash(self.password_hash, password)

    @property
    def is_active(self):
        """Override UserMixin is_active property"""
        return self.active

    @property
    def driver_profile(self):
        """Driver profile linked to this login, if any"""
        return Driver.query.filter_by(user_id=self.id).first()

    def __repr__(self):
        return f'<User {self.email}>'

class Route(db.Model):
    __tablename__ = 'routes'
    id = db.Column(db.String, primary_key=True)  # UUID
    name = db.Column(db.String, unique=True, nullable=False)
    vehicle_no = db.Column(db.String, default='')
    areas = db.Column(db.JSON, default=list)  # Ordered pickup area names
    term = db.Column(db.String, default='Term 1')
    year = db.Column(db.Integer)
    status = db.Column(db.String, default='active')  # active, archived

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

class Driver(db.Model):
    __tablename__ = 'drivers'
    id = db.Column(db.String, primary_key=True)  # UUID
    user_id = db.Column(db.Integer, db.ForeignKey(User.id))
    name = db.Column(db.String, nullable=False)
    email = db.Column(db.String, unique=True, nullable=False)
    phone = db.Column(db.String, default='')
    route_id = db.Column(db.String, db.ForeignKey('routes.id'))
    role = db.Column(db.String, default='driver')  # driver or admin
    status = db.Column(db.String, default='active')  # active, inactive
    photo_url = db.Column(db.String)

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    user = db.relationship(User, backref='drivers')
    route = db.relationship('Route', backref='drivers')

class Minder(db.Model):
    __tablename__ = 'minders'
    id = db.Column(db.String, primary_key=True)  # UUID
    name = db.Column(db.String, nullable=False)
    phone = db.Column(db.String, nullable=False)
    driver_id = db.Column(db.String, db.ForeignKey('drivers.id'))
    route_id = db.Column(db.String, db.ForeignKey('routes.id'))

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    route = db.relationship('Route', backref='minders')

class Vehicle(db.Model):
    __tablename__ = 'vehicles'
    id = db.Column(db.String, primary_key=True)  # UUID
    vehicle_no = db.Column(db.String, unique=True, nullable=False)
    make = db.Column(db.String)
    model = db.Column(db.String)
    year = db.Column(db.Integer)
    color = db.Column(db.String)
    capacity = db.Column(db.Integer, default=14)
    image_url = db.Column(db.String)
    status = db.Column(db.String, default='active')  # active, inactive, maintenance
    route_id = db.Column(db.String, db.ForeignKey('routes.id'))

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

class Area(db.Model):
    __tablename__ = 'areas'
    id = db.Column(db.String, primary_key=True)  # UUID
    name = db.Column(db.String, nullable=False)
    route_id = db.Column(db.String, db.ForeignKey('routes.id'))
    pickup_order = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime, default=datetime.now)

    route = db.relationship('Route', backref='area_records')

class Grade(db.Model):
    __tablename__ = 'grades'
    id = db.Column(db.String, primary_key=True)  # UUID
    name = db.Column(db.String, unique=True, nullable=False)  # e.g. "PP1", "Grade 4"
    sort_order = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime, default=datetime.now)

class Learner(db.Model):
    __tablename__ = 'learners'
    id = db.Column(db.String, primary_key=True)  # UUID
    name = db.Column(db.String, nullable=False)
    admission_no = db.Column(db.String, unique=True, nullable=False)
    class_name = db.Column(db.String)
    route_id = db.Column(db.String, db.ForeignKey('routes.id'))
    trip = db.Column(db.Integer, default=1)

    # Pickup and drop-off
    pickup_area = db.Column(db.String)
    pickup_time = db.Column(db.String)
    dropoff_area = db.Column(db.String)
    drop_time = db.Column(db.String)

    # Contact details
    father_phone = db.Column(db.String)
    mother_phone = db.Column(db.String)
    house_help_phone = db.Column(db.String)

    active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    route = db.relationship('Route', backref='learners')

class SchoolSettings(db.Model):
    __tablename__ = 'school_settings'
    id = db.Column(db.String, primary_key=True)  # UUID
    school_name = db.Column(db.String, nullable=False)
    phone = db.Column(db.String)
    email = db.Column(db.String)
    website = db.Column(db.String)
    address = db.Column(db.String)
    logo_url = db.Column(db.String)

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

class AuditLog(db.Model):
    __tablename__ = 'audit_logs'
    id = db.Column(db.String, primary_key=True)  # UUID
    learner_id = db.Column(db.String)  # Kept after a learner is removed
    user_id = db.Column(db.Integer)
    user_name = db.Column(db.String, nullable=False)
    user_role = db.Column(db.String, nullable=False)
    action = db.Column(db.String, nullable=False)  # created, updated, deactivated, reactivated, rollover
    field_name = db.Column(db.String)
    old_value = db.Column(db.String)
    new_value = db.Column(db.String)
    timestamp = db.Column(db.DateTime, default=datetime.now)
