from flask import Flask, request
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
import os
from werkzeug.middleware.proxy_fix import ProxyFix
import logging

# Configure logging - use INFO level for production
logging.basicConfig(level=os.environ.get('LOG_LEVEL', 'INFO').upper())
logger = logging.getLogger(__name__)

class Base(DeclarativeBase):
    pass

# Initialize Flask app
app = Flask(__name__)
app.secret_key = os.environ.get('SESSION_SECRET', 'dev-secret')
app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1) # needed for url_for to generate with https

# Database configuration
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('SQLALCHEMY_DATABASE_URI', 'sqlite:///transport.db')
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'devkey')
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
    'pool_pre_ping': True,
    "pool_recycle": 300,
}

# School name used on reports until school settings are saved
app.config['SCHOOL_NAME'] = os.environ.get('SCHOOL_NAME', 'Lelani School')

db = SQLAlchemy(app, model_class=Base)

# Add cache-busting headers for all HTML responses
@app.after_request
def add_cache_headers(response):
    if request.endpoint and response.content_type.startswith('text/html'):
        response.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '0'
    return response

# Flask-Login setup
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from datetime import timedelta

# Session length, SESSION_LIFETIME_HOURS overrides
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(hours=int(os.environ.get('SESSION_LIFETIME_HOURS', 24)))

login_manager = LoginManager()
login_manager.init_app(app)
login_manager.login_view = 'login'
login_manager.login_message = 'Please sign in to manage routes and learners.'
login_manager.login_message_category = 'info'
login_manager.session_protection = 'strong'

# CSRF Protection
csrf = CSRFProtect(app)

@login_manager.user_loader
def load_user(user_id):
    from models import User
    return db.session.get(User, int(user_id))


def ensure_default_admin():
    """Create the bootstrap admin account and its driver profile if missing"""
    import models

    email = os.environ.get('DEFAULT_ADMIN_EMAIL', 'admin@lelani.co.ke')
    password = os.environ.get('DEFAULT_ADMIN_PASSWORD', 'password123')

    admin_user = models.User.query.filter_by(email=email).first()
    if not admin_user:
        admin_user = models.User(email=email)
        admin_user.set_password(password)
        db.session.add(admin_user)
        db.session.flush()  # Get the ID
        logger.info(f"Default admin user created: {email}")

    # Ensure the admin has a driver profile with the admin role
    profile = models.Driver.query.filter_by(user_id=admin_user.id).first()
    if not profile:
        import uuid
        profile = models.Driver(
            id=str(uuid.uuid4()),
            user_id=admin_user.id,
            name='Administrator',
            email=email,
            phone='',
            role='admin',
            status='active'
        )
        db.session.add(profile)
        logger.info("Admin driver profile created for default admin user")

    db.session.commit()
    return admin_user


# Create tables and default admin user
# Need to put this in module-level to make it work with Gunicorn.
with app.app_context():
    import models  # noqa: F401

    db.create_all()
    ensure_default_admin()
    logger.info("Database tables created")

# Template context processor to provide is_admin to all templates
@app.context_processor
def inject_admin_status():
    from flask_login import current_user

    is_admin = False
    profile = None
    if current_user.is_authenticated:
        profile = current_user.driver_profile
        is_admin = profile is not None and profile.role == 'admin'

    return dict(is_admin=is_admin, current_profile=profile)
