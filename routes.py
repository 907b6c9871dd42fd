from flask import render_template, request, redirect, url_for, flash, jsonify, session, make_response, send_file
from flask_login import login_user, logout_user, login_required, current_user
from urllib.parse import urlparse
from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, SubmitField
from wtforms.validators import InputRequired, Length, Email, EqualTo
from functools import wraps
from io import BytesIO
from app import app
from models import User
from report_config import COLUMNS, SORT_KEYS, TRIP_SLOTS, ReportConfiguration, ReportValidationError
from report_filters import filter_and_sort, filter_options
import database_store as data_store
import report_service
import validators
import logging

logger = logging.getLogger(__name__)

def is_safe_url(target):
    """Check if a URL is safe for redirects (same host/internal only)"""
    if not target:
        return False

    parsed = urlparse(target)

    # Allow only relative URLs; this prevents redirects to external sites
    if parsed.netloc:
        return False

    if parsed.scheme and parsed.scheme not in ['http', 'https', '']:
        return False

    return True

# Login Form
class LoginForm(FlaskForm):
    email = StringField('Email', validators=[InputRequired(), Email(), Length(max=120)])
    password = PasswordField('Password', validators=[InputRequired(), Length(min=6, max=128)])
    submit = SubmitField('Sign In')

# Registration Form
class RegisterForm(FlaskForm):
    name = StringField('Full Name', validators=[InputRequired(), Length(max=100)])
    email = StringField('Email', validators=[InputRequired(), Email(), Length(max=120)])
    phone = StringField('Phone', validators=[InputRequired()])
    password = PasswordField('Password', validators=[InputRequired(), Length(min=validators.MIN_PASSWORD_LENGTH, max=128)])
    confirm_password = PasswordField('Confirm Password', validators=[
        InputRequired(), EqualTo('password', message='Passwords do not match')
    ])
    submit = SubmitField('Create Account')


def current_profile():
    """Driver profile (as dict) of the logged in user"""
    if not current_user.is_authenticated:
        return None
    return data_store.get_driver_for_user(current_user.id)

def user_is_admin(profile=None):
    profile = profile if profile is not None else current_profile()
    return bool(profile and profile.get('role') == 'admin')

def current_actor(profile=None):
    """Who is making a change, for the audit log"""
    profile = profile if profile is not None else current_profile()
    if not profile:
        return {'user_id': current_user.id, 'user_name': current_user.email, 'user_role': 'driver'}
    return {'user_id': current_user.id, 'user_name': profile['name'], 'user_role': profile['role']}

def wants_json():
    """Check if this is an AJAX request"""
    return request.headers.get('X-Requested-With') == 'XMLHttpRequest' or request.args.get('ajax') == '1'

def respond(success, message, endpoint, status=None, **extra):
    """JSON for AJAX callers, flash and redirect for plain form posts"""
    if wants_json():
        payload = {'success': success, 'message': message}
        payload.update(extra)
        return jsonify(payload), status or (200 if success else 400)
    flash(message, 'success' if success else 'error')
    return redirect(url_for(endpoint))

# Admin required decorator
def admin_required(f):
    """Decorator to require admin privileges for route access"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return redirect(url_for('login'))

        if not user_is_admin():
            logger.warning(f"Admin access denied for user {current_user.id} on {f.__name__}")
            if wants_json():
                return jsonify({'success': False, 'message': 'Admin privileges required'}), 403
            flash('Access denied. Admin privileges required.', 'error')
            return redirect(url_for('dashboard'))

        return f(*args, **kwargs)
    return decorated_function

def visible_routes(profile):
    """Routes a user may see: all for admins, only their own for drivers"""
    if user_is_admin(profile):
        return data_store.get_all_routes()
    route = data_store.get_route(profile.get('route_id')) if profile else None
    return {route['id']: route} if route else {}

def can_access_route(profile, route_id):
    return user_is_admin(profile) or bool(profile and route_id and profile.get('route_id') == route_id)

def split_list(value):
    """Comma or newline separated text as a list of trimmed entries"""
    items = []
    for line in (value or '').replace(',', '\n').splitlines():
        line = line.strip()
        if line:
            items.append(line)
    return items

def parse_int(value, default=None):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

# Make session permanent
@app.before_request
def make_session_permanent():
    session.permanent = True

# Authentication Routes
@app.route('/login', methods=['GET', 'POST'])
def login():
    """User login"""
    if current_user.is_authenticated:
        return redirect(url_for('dashboard'))

    form = LoginForm()
    if form.validate_on_submit():
        user = User.query.filter_by(email=form.email.data.strip().lower()).first()

        if user and user.check_password(form.password.data) and user.active:
            login_user(user)
            logger.info(f"User logged in: {user.email}")
            next_page = request.args.get('next')
            if next_page and is_safe_url(next_page):
                return redirect(next_page)
            return redirect(url_for('dashboard'))
        else:
            logger.warning(f"Failed login attempt for {form.email.data}")
            flash('Invalid email or password', 'error')

    return render_template('auth/login.html', form=form)

@app.route('/register', methods=['GET', 'POST'])
def register():
    """Driver self-registration"""
    if current_user.is_authenticated:
        return redirect(url_for('dashboard'))

    form = RegisterForm()
    if form.validate_on_submit():
        is_valid, error_msg = validators.validate_phone(form.phone.data, "Phone", required=True)
        if not is_valid:
            flash(error_msg, 'error')
            return render_template('auth/register.html', form=form)

        try:
            data_store.create_driver(
                form.name.data,
                form.email.data,
                phone=form.phone.data.strip(),
                role='driver',
                password=form.password.data
            )
        except ValueError as e:
            flash(str(e), 'error')
            return render_template('auth/register.html', form=form)

        flash('Account created. You can now sign in.', 'success')
        return redirect(url_for('login'))

    for field_errors in form.errors.values():
        for error in field_errors:
            flash(error, 'error')
    return render_template('auth/register.html', form=form)

@app.route('/logout')
@login_required
def logout():
    """User logout"""
    logout_user()
    flash('You have been logged out')
    return redirect(url_for('login'))

@app.route('/')
def index():
    if current_user.is_authenticated:
        return redirect(url_for('dashboard'))
    return redirect(url_for('login'))

@app.route('/dashboard')
@login_required
def dashboard():
    """Dashboard with headline figures"""
    profile = current_profile()
    stats = data_store.get_dashboard_stats(profile)
    return render_template('dashboard.html', stats=stats, profile=profile)

@app.route('/api/dashboard-stats')
@login_required
def dashboard_stats():
    """Dashboard figures for the current user as JSON"""
    stats = data_store.get_dashboard_stats(current_profile())
    return jsonify({'success': True, 'stats': stats})

@app.route('/api/analytics')
@admin_required
def analytics():
    """Capacity and distribution figures for the analytics tab"""
    return jsonify({'success': True, 'analytics': data_store.get_analytics()})


# Learners
def learner_fields_from_form(form):
    fields = {}
    for key in ('name', 'admission_no', 'class_name', 'route_id', 'trip', 'pickup_area', 'pickup_time',
                'dropoff_area', 'drop_time', 'father_phone', 'mother_phone', 'house_help_phone'):
        if key in form:
            fields[key] = form.get(key)
    return fields

@app.route('/learners')
@login_required
def learners():
    """Learner list with search and filters"""
    profile = current_profile()
    routes = visible_routes(profile)
    all_learners = data_store.get_all_learners()
    if not user_is_admin(profile):
        all_learners = [l for l in all_learners if l['route_id'] in routes]

    filtered = data_store.search_learners(
        all_learners,
        search=request.args.get('search', ''),
        route_id=request.args.get('route_id') or None,
        status=request.args.get('status') or None,
        class_name=request.args.get('class_name') or None,
        trip=request.args.get('trip') or None
    )
    return render_template('learners.html',
                           learners=filtered,
                           routes=routes,
                           classes=data_store.get_unique_class_names(all_learners),
                           grades=data_store.get_all_grades(),
                           filters=request.args)

@app.route('/learners/add', methods=['POST'])
@login_required
def add_learner():
    """Add a learner; drivers can only add to their own route"""
    profile = current_profile()
    fields = learner_fields_from_form(request.form)
    if not user_is_admin(profile):
        fields['route_id'] = profile.get('route_id') if profile else None
        if not fields['route_id']:
            return respond(False, 'You are not assigned to a route', 'learners', status=403)

    try:
        learner_id = data_store.create_learner(actor=current_actor(profile), **fields)
    except ValueError as e:
        return respond(False, str(e), 'learners')

    return respond(True, f'Learner "{fields.get("name", "").strip()}" added successfully!', 'learners',
                   learner_id=learner_id)

@app.route('/learners/<learner_id>/data')
@login_required
def get_learner_data(learner_id):
    """Get learner data for editing"""
    learner = data_store.get_learner(learner_id)
    if not learner or not can_access_route(current_profile(), learner['route_id']):
        return jsonify({'success': False, 'message': 'Learner not found'}), 404
    return jsonify({'success': True, 'learner': learner})

@app.route('/learners/<learner_id>/edit', methods=['POST'])
@login_required
def edit_learner(learner_id):
    """Edit learner details"""
    profile = current_profile()
    learner = data_store.get_learner(learner_id)
    if not learner or not can_access_route(profile, learner['route_id']):
        return respond(False, 'Learner not found', 'learners', status=404)

    fields = learner_fields_from_form(request.form)
    if not user_is_admin(profile):
        fields.pop('route_id', None)  # Drivers cannot move learners off their route

    try:
        data_store.update_learner(learner_id, actor=current_actor(profile), **fields)
    except ValueError as e:
        return respond(False, str(e), 'learners')

    return respond(True, 'Learner updated successfully!', 'learners')

def change_learner_status(learner_id, active):
    profile = current_profile()
    learner = data_store.get_learner(learner_id)
    if not learner or not can_access_route(profile, learner['route_id']):
        return respond(False, 'Learner not found', 'learners', status=404)

    data_store.set_learner_active(learner_id, active, actor=current_actor(profile))
    state = 'reactivated' if active else 'deactivated'
    return respond(True, f'Learner "{learner["name"]}" {state}', 'learners')

@app.route('/learners/<learner_id>/deactivate', methods=['POST'])
@login_required
def deactivate_learner(learner_id):
    return change_learner_status(learner_id, False)

@app.route('/learners/<learner_id>/reactivate', methods=['POST'])
@login_required
def reactivate_learner(learner_id):
    return change_learner_status(learner_id, True)


# Admin: routes, drivers, minders, vehicles, areas, grades, settings
@app.route('/admin')
@admin_required
def admin():
    """Management page for everything except learners"""
    return render_template('admin.html',
                           routes=data_store.get_all_routes(),
                           drivers=data_store.get_all_drivers(),
                           minders=data_store.get_all_minders(),
                           vehicles=data_store.get_all_vehicles(),
                           areas=data_store.get_all_areas(),
                           grades=data_store.get_all_grades(),
                           settings=data_store.get_school_settings())

@app.route('/routes/add', methods=['POST'])
@admin_required
def add_route():
    """Add a new route"""
    name = (request.form.get('name') or '').strip()
    is_valid, error_msg = validators.validate_required(name, "Route name")
    if not is_valid:
        return respond(False, error_msg, 'admin')

    try:
        route_id = data_store.create_route(
            name,
            vehicle_no=request.form.get('vehicle_no', ''),
            areas=split_list(request.form.get('areas')),
            term=request.form.get('term') or 'Term 1',
            year=parse_int(request.form.get('year'))
        )
    except ValueError as e:
        return respond(False, str(e), 'admin')

    return respond(True, f'Route "{name}" added successfully!', 'admin', route_id=route_id)

@app.route('/routes/<route_id>/edit', methods=['POST'])
@admin_required
def edit_route(route_id):
    """Edit an existing route"""
    route = data_store.get_route(route_id)
    if not route:
        return respond(False, 'Route not found!', 'admin', status=404)

    updates = {}
    if 'name' in request.form:
        is_valid, error_msg = validators.validate_required(request.form['name'], "Route name")
        if not is_valid:
            return respond(False, error_msg, 'admin')
        updates['name'] = request.form['name'].strip()
    if 'vehicle_no' in request.form:
        updates['vehicle_no'] = request.form['vehicle_no']
    if 'areas' in request.form:
        updates['areas'] = split_list(request.form['areas'])
    if request.form.get('term'):
        updates['term'] = request.form['term']
    if request.form.get('year'):
        updates['year'] = parse_int(request.form['year'], route['year'])
    if request.form.get('status'):
        updates['status'] = request.form['status']

    try:
        data_store.update_route(route_id, **updates)
    except ValueError as e:
        return respond(False, str(e), 'admin')

    return respond(True, 'Route updated successfully!', 'admin')

@app.route('/routes/<route_id>/delete', methods=['POST'])
@admin_required
def delete_route(route_id):
    """Delete a route"""
    route = data_store.get_route(route_id)
    if not route:
        return respond(False, 'Route not found!', 'admin', status=404)
    data_store.delete_route(route_id)
    return respond(True, f'Route "{route["name"]}" deleted successfully!', 'admin')

@app.route('/drivers/add', methods=['POST'])
@admin_required
def add_driver():
    """Add a driver or admin profile, with a login when a password is given"""
    name = request.form.get('name', '')
    email = request.form.get('email', '')
    phone = request.form.get('phone', '')
    password = request.form.get('password') or None

    checks = [
        validators.validate_required(name, "Driver name"),
        validators.validate_required(email, "Email"),
        validators.validate_phone(phone, "Phone"),
    ]
    if password:
        checks.append(validators.validate_password(password))
    is_valid, error_msg = validators.run_checks(*checks)
    if not is_valid:
        return respond(False, error_msg, 'admin')

    try:
        driver_id = data_store.create_driver(
            name, email,
            phone=phone,
            route_id=request.form.get('route_id') or None,
            role=request.form.get('role') or 'driver',
            password=password
        )
    except ValueError as e:
        return respond(False, str(e), 'admin')

    return respond(True, f'Driver "{name.strip()}" added successfully!', 'admin', driver_id=driver_id)

@app.route('/drivers/<driver_id>/edit', methods=['POST'])
@admin_required
def edit_driver(driver_id):
    """Edit a driver profile"""
    if not data_store.get_driver(driver_id):
        return respond(False, 'Driver not found!', 'admin', status=404)

    updates = {key: request.form[key] for key in ('name', 'email', 'phone', 'route_id', 'role', 'status')
               if key in request.form}
    checks = [validators.validate_phone(updates.get('phone'), "Phone")]
    if 'name' in updates:
        checks.append(validators.validate_required(updates['name'], "Driver name"))
    is_valid, error_msg = validators.run_checks(*checks)
    if not is_valid:
        return respond(False, error_msg, 'admin')

    try:
        data_store.update_driver(driver_id, **updates)
    except ValueError as e:
        return respond(False, str(e), 'admin')
    return respond(True, 'Driver updated successfully!', 'admin')

@app.route('/drivers/<driver_id>/delete', methods=['POST'])
@admin_required
def delete_driver(driver_id):
    """Delete a driver profile and its login"""
    driver = data_store.get_driver(driver_id)
    if not driver:
        return respond(False, 'Driver not found!', 'admin', status=404)
    if driver['user_id'] == current_user.id:
        return respond(False, 'You cannot delete your own account', 'admin')
    data_store.delete_driver(driver_id)
    return respond(True, f'Driver "{driver["name"]}" deleted successfully!', 'admin')

@app.route('/minders/add', methods=['POST'])
@admin_required
def add_minder():
    """Add a minder"""
    name = request.form.get('name', '')
    phone = request.form.get('phone', '')
    is_valid, error_msg = validators.run_checks(
        validators.validate_required(name, "Minder name"),
        validators.validate_phone(phone, "Phone", required=True),
    )
    if not is_valid:
        return respond(False, error_msg, 'admin')

    minder_id = data_store.create_minder(
        name, phone,
        driver_id=request.form.get('driver_id') or None,
        route_id=request.form.get('route_id') or None
    )
    return respond(True, f'Minder "{name.strip()}" added successfully!', 'admin', minder_id=minder_id)

@app.route('/minders/<minder_id>/edit', methods=['POST'])
@admin_required
def edit_minder(minder_id):
    updates = {key: request.form[key] for key in ('name', 'phone', 'driver_id', 'route_id') if key in request.form}
    if 'phone' in updates:
        is_valid, error_msg = validators.validate_phone(updates['phone'], "Phone", required=True)
        if not is_valid:
            return respond(False, error_msg, 'admin')
    if not data_store.update_minder(minder_id, **updates):
        return respond(False, 'Minder not found!', 'admin', status=404)
    return respond(True, 'Minder updated successfully!', 'admin')

@app.route('/minders/<minder_id>/delete', methods=['POST'])
@admin_required
def delete_minder(minder_id):
    if not data_store.delete_minder(minder_id):
        return respond(False, 'Minder not found!', 'admin', status=404)
    return respond(True, 'Minder deleted successfully!', 'admin')

def vehicle_fields_from_form(form):
    fields = {key: form[key] for key in ('vehicle_no', 'make', 'model', 'color', 'image_url', 'status', 'route_id')
              if key in form}
    if 'year' in form:
        fields['year'] = parse_int(form['year'])
    if 'capacity' in form:
        fields['capacity'] = parse_int(form['capacity'], 14)
    return fields

@app.route('/vehicles/add', methods=['POST'])
@admin_required
def add_vehicle():
    """Add a vehicle"""
    fields = vehicle_fields_from_form(request.form)
    is_valid, error_msg = validators.validate_required(fields.get('vehicle_no'), "Registration number")
    if not is_valid:
        return respond(False, error_msg, 'admin')

    try:
        vehicle_id = data_store.create_vehicle(**fields)
    except ValueError as e:
        return respond(False, str(e), 'admin')
    return respond(True, 'Vehicle added successfully!', 'admin', vehicle_id=vehicle_id)

@app.route('/vehicles/<vehicle_id>/edit', methods=['POST'])
@admin_required
def edit_vehicle(vehicle_id):
    try:
        updated = data_store.update_vehicle(vehicle_id, **vehicle_fields_from_form(request.form))
    except ValueError as e:
        return respond(False, str(e), 'admin')
    if not updated:
        return respond(False, 'Vehicle not found!', 'admin', status=404)
    return respond(True, 'Vehicle updated successfully!', 'admin')

@app.route('/vehicles/<vehicle_id>/delete', methods=['POST'])
@admin_required
def delete_vehicle(vehicle_id):
    if not data_store.delete_vehicle(vehicle_id):
        return respond(False, 'Vehicle not found!', 'admin', status=404)
    return respond(True, 'Vehicle deleted successfully!', 'admin')

@app.route('/areas/add', methods=['POST'])
@admin_required
def add_area():
    """Add a pickup area to a route"""
    name = request.form.get('name', '')
    route_id = request.form.get('route_id')
    is_valid, error_msg = validators.run_checks(
        validators.validate_required(name, "Area name"),
        validators.validate_required(route_id, "Route"),
    )
    if not is_valid:
        return respond(False, error_msg, 'admin')
    if not data_store.get_route(route_id):
        return respond(False, 'Route not found!', 'admin', status=404)

    area_id = data_store.create_area(name, route_id, pickup_order=parse_int(request.form.get('pickup_order')))
    return respond(True, f'Area "{name.strip()}" added successfully!', 'admin',
                   area={'id': area_id, 'name': name.strip()})

@app.route('/areas/<area_id>/edit', methods=['POST'])
@admin_required
def edit_area(area_id):
    updates = {}
    if 'name' in request.form:
        is_valid, error_msg = validators.validate_required(request.form['name'], "Area name")
        if not is_valid:
            return respond(False, error_msg, 'admin')
        updates['name'] = request.form['name'].strip()
    if request.form.get('route_id'):
        updates['route_id'] = request.form['route_id']
    if request.form.get('pickup_order'):
        updates['pickup_order'] = parse_int(request.form['pickup_order'], 0)
    if not data_store.update_area(area_id, **updates):
        return respond(False, 'Area not found!', 'admin', status=404)
    return respond(True, 'Area updated successfully!', 'admin')

@app.route('/areas/<area_id>/move', methods=['POST'])
@admin_required
def move_area(area_id):
    """Move an area up or down the pickup order"""
    direction = request.form.get('direction', '')
    if not data_store.move_area(area_id, direction):
        return respond(False, 'Area cannot be moved further', 'admin')
    return respond(True, 'Pickup order updated', 'admin')

@app.route('/areas/<area_id>/delete', methods=['POST'])
@admin_required
def delete_area(area_id):
    if not data_store.delete_area(area_id):
        return respond(False, 'Area not found!', 'admin', status=404)
    return respond(True, 'Area deleted successfully!', 'admin')

@app.route('/grades/add', methods=['POST'])
@admin_required
def add_grade():
    name = request.form.get('name', '')
    is_valid, error_msg = validators.validate_required(name, "Grade name")
    if not is_valid:
        return respond(False, error_msg, 'admin')
    try:
        grade_id = data_store.create_grade(name, sort_order=parse_int(request.form.get('sort_order')))
    except ValueError as e:
        return respond(False, str(e), 'admin')
    return respond(True, f'Grade "{name.strip()}" added successfully!', 'admin', grade_id=grade_id)

@app.route('/grades/<grade_id>/edit', methods=['POST'])
@admin_required
def edit_grade(grade_id):
    updates = {}
    if request.form.get('name'):
        updates['name'] = request.form['name'].strip()
    if request.form.get('sort_order'):
        updates['sort_order'] = parse_int(request.form['sort_order'], 0)
    try:
        updated = data_store.update_grade(grade_id, **updates)
    except ValueError as e:
        return respond(False, str(e), 'admin')
    if not updated:
        return respond(False, 'Grade not found!', 'admin', status=404)
    return respond(True, 'Grade updated successfully!', 'admin')

@app.route('/grades/<grade_id>/delete', methods=['POST'])
@admin_required
def delete_grade(grade_id):
    if not data_store.delete_grade(grade_id):
        return respond(False, 'Grade not found!', 'admin', status=404)
    return respond(True, 'Grade deleted successfully!', 'admin')

@app.route('/settings', methods=['POST'])
@admin_required
def save_settings():
    """Save school details used on reports"""
    school_name = request.form.get('school_name', '')
    is_valid, error_msg = validators.run_checks(
        validators.validate_required(school_name, "School name"),
        validators.validate_phone(request.form.get('phone'), "School phone"),
    )
    if not is_valid:
        return respond(False, error_msg, 'admin')

    settings = data_store.save_school_settings(
        school_name,
        **{key: request.form.get(key, '') for key in ('phone', 'email', 'website', 'address', 'logo_url')}
    )
    return respond(True, 'School settings saved', 'admin', settings=settings)


# Bulk import, rollover and graduates
@app.route('/admin/import/template/<kind>')
@admin_required
def download_import_template(kind):
    """Download CSV template for bulk learner or area upload"""
    if kind == 'learners':
        csv_content = data_store.create_learners_csv_template()
    elif kind == 'areas':
        csv_content = data_store.create_areas_csv_template()
    else:
        return respond(False, 'Unknown template', 'admin', status=404)

    response = make_response(csv_content)
    response.headers['Content-Type'] = 'text/csv'
    response.headers['Content-Disposition'] = f'attachment; filename={kind}_template.csv'
    return response

@app.route('/admin/import', methods=['POST'])
@admin_required
def bulk_import():
    """Handle bulk CSV upload of learners or areas"""
    kind = request.form.get('kind', 'learners')
    if 'csv_file' not in request.files:
        return respond(False, 'No file uploaded!', 'admin')

    file = request.files['csv_file']
    if file.filename == '':
        return respond(False, 'No file selected!', 'admin')
    if not file.filename.lower().endswith('.csv'):
        return respond(False, 'Please upload a CSV file!', 'admin')

    try:
        csv_content = file.read().decode('utf-8-sig')
    except UnicodeDecodeError:
        return respond(False, 'The file must be UTF-8 encoded CSV', 'admin')

    if kind == 'areas':
        results = data_store.process_areas_csv(csv_content)
    else:
        results = data_store.process_learners_csv(csv_content, actor=current_actor())

    success_count = len(results['success'])
    if wants_json():
        return jsonify({'success': success_count > 0, 'results': results,
                        'message': f'Imported {success_count} {kind}'})

    if success_count > 0:
        flash(f'Successfully imported {success_count} {kind}!', 'success')
    if results['errors']:
        flash(f'{len(results["errors"])} errors occurred during upload:', 'error')
        for error in results['errors']:
            flash(error, 'error')
    return redirect(url_for('admin'))

@app.route('/admin/rollover', methods=['POST'])
@admin_required
def rollover():
    """Move all active routes to a new term and year"""
    new_term = (request.form.get('new_term') or '').strip()
    new_year = parse_int(request.form.get('new_year'))
    if not new_term or not new_year:
        return respond(False, 'New term and year are required', 'admin')

    summary = data_store.run_rollover(
        new_term, new_year,
        clear_learners=request.form.get('clear_learners') in ('1', 'on', 'true'),
        archive_current=request.form.get('archive_current', 'on') in ('1', 'on', 'true'),
        actor=current_actor()
    )
    return respond(True, f'Rolled over {summary["route_count"]} routes to {new_term} {new_year}', 'admin',
                   summary=summary)

@app.route('/admin/deactivate-graduates', methods=['POST'])
@admin_required
def deactivate_graduates():
    """Deactivate every active learner in the listed classes"""
    classes = split_list(request.form.get('classes'))
    if not classes:
        return respond(False, 'Enter at least one class', 'admin')
    count = data_store.deactivate_graduates(classes, actor=current_actor())
    return respond(True, f'Deactivated {count} learners', 'admin', count=count)

@app.route('/audit-logs')
@admin_required
def audit_logs():
    """Recent learner changes"""
    logs = data_store.filter_audit_logs(
        data_store.get_audit_logs(),
        search=request.args.get('search', ''),
        action=request.args.get('action', '')
    )
    return render_template('audit_logs.html', logs=logs, actions=data_store.AUDIT_ACTIONS, filters=request.args)


# Reports
@app.route('/reports')
@login_required
def reports():
    """Report configuration page"""
    profile = current_profile()
    return render_template('reports.html',
                           routes=visible_routes(profile),
                           columns=COLUMNS,
                           sort_keys=SORT_KEYS,
                           trip_slots=TRIP_SLOTS)

@app.route('/api/reports/preview')
@login_required
def report_preview():
    """Learner count for the current settings plus the filter choices for the route"""
    profile = current_profile()
    try:
        config = ReportConfiguration.from_form(request.args)
        if not can_access_route(profile, config.route_id):
            raise ReportValidationError("You can only report on your own route")
        route_learners = data_store.get_learners_for_route(config.route_id)
    except ReportValidationError as e:
        return jsonify({'success': False, 'message': str(e)}), 400

    areas, classes = filter_options(route_learners)
    return jsonify({
        'success': True,
        'count': len(filter_and_sort(route_learners, config)),
        'total': len(route_learners),
        'areas': areas,
        'classes': classes,
    })

@app.route('/reports/generate', methods=['POST'])
@login_required
def generate_report():
    """Build the configured report and send it as a download"""
    profile = current_profile()
    try:
        config = ReportConfiguration.from_form(request.form)
        if not can_access_route(profile, config.route_id):
            raise ReportValidationError("You can only report on your own route")

        inputs = data_store.load_report_inputs(config.route_id)
        if not inputs:
            raise ReportValidationError("Route not found")

        report = report_service.generate_report(
            config,
            inputs['route'],
            inputs['learners'],
            settings=inputs['settings'],
            driver=inputs['driver'],
            minder=inputs['minder'],
            areas=inputs['areas'],
            default_school_name=app.config['SCHOOL_NAME']
        )
    except ReportValidationError as e:
        logger.info(f"Report request rejected: {e}")
        return respond(False, str(e), 'reports')
    except Exception:
        logger.exception("Failed to generate report")
        return respond(False, 'Failed to generate report', 'reports', status=500)

    return send_file(
        BytesIO(report.content),
        mimetype=report.mimetype,
        as_attachment=True,
        download_name=report.filename
    )


@app.errorhandler(404)
def page_not_found(e):
    return render_template('error.html', code=404, message='Page not found'), 404

@app.errorhandler(500)
def internal_server_error(e):
    logger.error(f"Internal server error: {e}")
    return render_template('error.html', code=500, message='Something went wrong'), 500
