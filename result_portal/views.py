import csv
import logging
from io import StringIO

from flask import (
    Blueprint,
    Response,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from flask_wtf.csrf import CSRFError

from result_portal.auth import (
    check_admin_credentials,
    get_client_ip,
    is_admin_session,
    login_admin,
)
from result_portal.db import StoreError
from result_portal.forms import (
    CreateClassesForm,
    LoginForm,
    ResultLookupForm,
    StudentForm,
    SubjectForm,
    marks_field_name,
    parse_marks_form,
)
from result_portal.grading import SUBJECT_FLOOR_POLICY

bp = Blueprint('portal', __name__)

GENERIC_ERROR_MESSAGE = 'Something went wrong. Please try again.'
NOT_FOUND_MESSAGE = 'No result found for this Register Number. Please check and try again.'


def get_config():
    return current_app.config['PORTAL_CONFIG']


def get_store():
    return current_app.extensions['result_store']


def get_login_throttle():
    return current_app.extensions['login_throttle']


def _store_failed(action, exc):
    logging.error("%s failed: %s", action, exc)
    flash(GENERIC_ERROR_MESSAGE, 'error')


def _flash_form_errors(form):
    for field_name, errors in form.errors.items():
        label = getattr(form, field_name).label.text if hasattr(form, field_name) else field_name
        for error in errors:
            flash(f'{label}: {error}', 'error')


@bp.app_errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    flash('Form token expired/invalid. Please retry your last action.', 'error')
    return redirect(request.referrer or url_for('portal.home'))


@bp.app_context_processor
def inject_portal_context():
    config = get_config()
    return {
        'is_admin': is_admin_session(config),
        'grading_policy': config.grading_policy,
        'marks_field_name': marks_field_name,
    }


# ==================== PUBLIC ROUTES ====================

@bp.route('/')
def home():
    return render_template('index.html', form=ResultLookupForm())


@bp.route('/result', methods=['GET', 'POST'])
def view_result():
    """Look up one student's marksheet by register number."""
    form = ResultLookupForm()
    register_number = ''
    if form.validate_on_submit():
        register_number = form.register_number.data
    elif request.method == 'POST':
        _flash_form_errors(form)
        return render_template('index.html', form=form), 400
    else:
        register_number = (request.args.get('register_number') or '').strip()
        if not register_number:
            return render_template('index.html', form=form)

    try:
        result = get_store().lookup_result(register_number)
    except StoreError as exc:
        _store_failed('Result lookup', exc)
        return render_template('index.html', form=form), 503
    if result is None:
        flash(NOT_FOUND_MESSAGE, 'error')
        return render_template('index.html', form=form), 404
    if result['error']:
        flash(result['error'], 'error')
        return render_template('index.html', form=form), 404
    return render_template('result.html', form=form, result=result)


@bp.route('/api/results/<path:register_number>')
def api_result(register_number):
    """JSON marksheet for one register number."""
    try:
        result = get_store().lookup_result(register_number)
    except StoreError as exc:
        logging.error("Result lookup failed: %s", exc)
        return jsonify({'error': GENERIC_ERROR_MESSAGE}), 503
    if result is None:
        return jsonify({'error': NOT_FOUND_MESSAGE}), 404
    if result['error']:
        return jsonify({'error': result['error']}), 404
    return jsonify(result)


# ==================== AUTH ROUTES ====================

@bp.route('/login', methods=['GET', 'POST'])
def login():
    """Admin sign-in against the configured admin identity."""
    config = get_config()
    form = LoginForm()
    if form.validate_on_submit():
        email = form.email.data.strip().lower()
        client_ip = get_client_ip(config.trust_proxy_headers)
        throttle = get_login_throttle()
        try:
            blocked, wait_minutes = throttle.is_blocked(email, client_ip)
            if blocked:
                flash(f'Too many failed login attempts. Try again in about {wait_minutes} minute(s).', 'error')
                return render_template('login.html', form=form)
            if check_admin_credentials(config, email, form.password.data):
                throttle.clear(email, client_ip)
                login_admin(config)
                logging.info("Admin login from %s", client_ip)
                return redirect(url_for('portal.admin_dashboard'))
            throttle.register_failure(email, client_ip)
        except StoreError as exc:
            _store_failed('Login', exc)
            return render_template('login.html', form=form)
        logging.warning("Failed admin login for %s from %s", email, client_ip)
        flash('Invalid email or password.', 'error')
    elif request.method == 'POST':
        flash('Please enter email and password.', 'error')
    return render_template('login.html', form=form)


@bp.route('/logout')
def logout():
    session.clear()
    return redirect(url_for('portal.home'))


# ==================== ADMIN ROUTES ====================

@bp.route('/admin')
def admin_dashboard():
    config = get_config()
    if not is_admin_session(config):
        return redirect(url_for('portal.login'))
    try:
        classes = get_store().list_classes()
        stats = get_store().get_dashboard_stats()
    except StoreError as exc:
        _store_failed('Loading dashboard', exc)
        classes, stats = [], {'classes': 0, 'students': 0, 'subjects': 0}
    return render_template(
        'admin/dashboard.html',
        classes=classes,
        stats=stats,
        create_form=CreateClassesForm(max_classes=config.max_classes),
    )


@bp.route('/admin/classes/create', methods=['POST'])
def admin_create_classes():
    config = get_config()
    if not is_admin_session(config):
        return redirect(url_for('portal.login'))
    form = CreateClassesForm(max_classes=config.max_classes)
    if not form.validate_on_submit():
        _flash_form_errors(form)
        return redirect(url_for('portal.admin_dashboard'))
    try:
        created = get_store().create_classes(form.count.data)
    except StoreError as exc:
        _store_failed('Creating classes', exc)
        return redirect(url_for('portal.admin_dashboard'))
    if created:
        flash(f'{created} class(es) created successfully!', 'success')
    else:
        flash('All requested classes already exist.', 'success')
    return redirect(url_for('portal.admin_dashboard'))


@bp.route('/admin/classes/<int:class_id>/delete', methods=['POST'])
def admin_delete_class(class_id):
    if not is_admin_session(get_config()):
        return redirect(url_for('portal.login'))
    try:
        deleted = get_store().delete_class(class_id)
    except StoreError as exc:
        _store_failed('Deleting class', exc)
        return redirect(url_for('portal.admin_dashboard'))
    flash('Class deleted.' if deleted else 'Class was already deleted.', 'success')
    return redirect(url_for('portal.admin_dashboard'))


@bp.route('/admin/classes/<int:class_id>')
def admin_class_detail(class_id):
    config = get_config()
    if not is_admin_session(config):
        return redirect(url_for('portal.login'))
    store = get_store()
    try:
        school_class = store.get_class(class_id)
        if not school_class:
            flash('Class not found.', 'error')
            return redirect(url_for('portal.admin_dashboard'))
        subjects = store.list_subjects(class_id)
        students = store.list_students(class_id)
    except StoreError as exc:
        _store_failed('Loading class', exc)
        return redirect(url_for('portal.admin_dashboard'))
    subject_form = SubjectForm()
    if config.grading_policy == SUBJECT_FLOOR_POLICY:
        subject_form.max_marks.data = config.marks_max
    return render_template(
        'admin/class_detail.html',
        school_class=school_class,
        subjects=subjects,
        students=students,
        subject_form=subject_form,
        student_form=StudentForm(),
        fixed_max_marks=config.marks_max if config.grading_policy == SUBJECT_FLOOR_POLICY else None,
    )


@bp.route('/admin/classes/<int:class_id>/subjects', methods=['POST'])
def admin_add_subject(class_id):
    config = get_config()
    if not is_admin_session(config):
        return redirect(url_for('portal.login'))
    form = SubjectForm()
    if not form.validate_on_submit():
        _flash_form_errors(form)
        return redirect(url_for('portal.admin_class_detail', class_id=class_id))
    try:
        subject_id, err = get_store().add_subject(class_id, form.name.data, form.max_marks.data)
    except StoreError as exc:
        _store_failed('Adding subject', exc)
        return redirect(url_for('portal.admin_class_detail', class_id=class_id))
    if err:
        flash(err, 'error')
    else:
        flash('Subject added!', 'success')
    return redirect(url_for('portal.admin_class_detail', class_id=class_id))


@bp.route('/admin/subjects/<int:subject_id>/delete', methods=['POST'])
def admin_delete_subject(subject_id):
    if not is_admin_session(get_config()):
        return redirect(url_for('portal.login'))
    try:
        class_id = get_store().delete_subject(subject_id)
    except StoreError as exc:
        _store_failed('Deleting subject', exc)
        return redirect(request.referrer or url_for('portal.admin_dashboard'))
    if class_id is None:
        flash('Subject not found.', 'error')
        return redirect(url_for('portal.admin_dashboard'))
    flash('Subject deleted', 'success')
    return redirect(url_for('portal.admin_class_detail', class_id=class_id))


@bp.route('/admin/classes/<int:class_id>/students', methods=['POST'])
def admin_add_student(class_id):
    if not is_admin_session(get_config()):
        return redirect(url_for('portal.login'))
    form = StudentForm()
    if not form.validate_on_submit():
        _flash_form_errors(form)
        return redirect(url_for('portal.admin_class_detail', class_id=class_id))
    store = get_store()
    try:
        subjects = store.list_subjects(class_id)
        marks, errors = parse_marks_form(request.form, subjects)
        if errors:
            for error in errors:
                flash(error, 'error')
            return redirect(url_for('portal.admin_class_detail', class_id=class_id))
        student_id, err = store.add_student(
            class_id,
            form.name.data,
            form.register_number.data,
            marks,
            father_name=form.father_name.data,
            photo_url=form.photo_url.data,
        )
    except StoreError as exc:
        _store_failed('Adding student', exc)
        return redirect(url_for('portal.admin_class_detail', class_id=class_id))
    if err:
        flash(err, 'error')
    else:
        flash('Student added successfully!', 'success')
    return redirect(url_for('portal.admin_class_detail', class_id=class_id))


@bp.route('/admin/students/<int:student_id>/marks', methods=['GET', 'POST'])
def admin_edit_marks(student_id):
    """Bulk edit of one student's marks."""
    if not is_admin_session(get_config()):
        return redirect(url_for('portal.login'))
    store = get_store()
    try:
        student = store.get_student(student_id)
        if not student:
            flash('Student not found.', 'error')
            return redirect(url_for('portal.admin_dashboard'))
        subjects = store.list_subjects(student['class_id'])
        if request.method == 'POST':
            marks, errors = parse_marks_form(request.form, subjects)
            if not errors:
                store.update_marks(student_id, marks)
                flash('Marks updated!', 'success')
                return redirect(url_for('portal.admin_class_detail', class_id=student['class_id']))
            for error in errors:
                flash(error, 'error')
        current_marks = store.get_student_marks(student_id)
    except StoreError as exc:
        _store_failed('Updating marks', exc)
        return redirect(url_for('portal.admin_dashboard'))
    return render_template(
        'admin/edit_marks.html',
        student=student,
        subjects=subjects,
        marks=current_marks,
    )


@bp.route('/admin/students/<int:student_id>/delete', methods=['POST'])
def admin_delete_student(student_id):
    if not is_admin_session(get_config()):
        return redirect(url_for('portal.login'))
    class_id = request.form.get('class_id', type=int)
    try:
        deleted = get_store().delete_student(student_id)
    except StoreError as exc:
        _store_failed('Deleting student', exc)
        deleted = None
    if deleted:
        flash('Student deleted', 'success')
    elif deleted is False:
        flash('Student was already deleted.', 'success')
    if class_id:
        return redirect(url_for('portal.admin_class_detail', class_id=class_id))
    return redirect(url_for('portal.admin_dashboard'))


@bp.route('/admin/classes/<int:class_id>/recompute', methods=['POST'])
def admin_recompute_class(class_id):
    if not is_admin_session(get_config()):
        return redirect(url_for('portal.login'))
    try:
        count = get_store().recompute_class_summaries(class_id)
    except StoreError as exc:
        _store_failed('Recomputing results', exc)
        return redirect(url_for('portal.admin_class_detail', class_id=class_id))
    flash(f'Recomputed results for {count} student(s).', 'success')
    return redirect(url_for('portal.admin_class_detail', class_id=class_id))


@bp.route('/admin/classes/<int:class_id>/export.csv')
def admin_export_class(class_id):
    """Download the class marksheet as CSV."""
    if not is_admin_session(get_config()):
        return redirect(url_for('portal.login'))
    store = get_store()
    try:
        school_class = store.get_class(class_id)
        if not school_class:
            flash('Class not found.', 'error')
            return redirect(url_for('portal.admin_dashboard'))
        header, rows = store.export_class_results(class_id)
    except StoreError as exc:
        _store_failed('Exporting results', exc)
        return redirect(url_for('portal.admin_class_detail', class_id=class_id))

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(header)
    writer.writerows(rows)
    filename = school_class['name'].strip().lower().replace(' ', '_') + '_results.csv'
    return Response(
        output.getvalue(),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={filename}'}
    )
