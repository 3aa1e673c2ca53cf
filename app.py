# app.py
from flask import Flask, render_template, request, jsonify, session, redirect, url_for, flash, g, Response
from functools import wraps
import firebase_admin
from firebase_admin import credentials, auth as admin_auth, firestore
import os
import logging
import traceback
import datetime
import cloudinary
import cloudinary.uploader
from dotenv import load_dotenv
import re
from markupsafe import escape, Markup
import math

import catalog
import emails
import learning
import messaging
import platform_settings
import revenue
import support
from datastore import FirestorePermissionError
from marketing import AIUnavailable, CopywritingClient
from payments import MonerooClient, PaymentError, create_promo_code, discounted_price, finalize_payment, find_promo_code, list_promo_codes, start_checkout, toggle_promo_code
from roles import ROLES, build_user_profile, new_user_document, resolve_active_role, switch_role

load_dotenv()
logging.basicConfig(level=getattr(logging, os.environ.get('LOG_LEVEL', 'INFO').upper(), logging.INFO), format='%(asctime)s %(levelname)s %(name)s: %(message)s')
app = Flask(__name__, static_folder='static', template_folder='templates')

app.config['TEMPLATES_AUTO_RELOAD'] = True

app.secret_key = os.environ.get('FLASK_SECRET_KEY')
cloudinary.config(cloud_name=os.environ.get('CLOUDINARY_CLOUD_NAME'), api_key=os.environ.get('CLOUDINARY_API_KEY'), api_secret=os.environ.get('CLOUDINARY_API_SECRET'), secure=True)
db = None
try:
    cred = credentials.Certificate(os.environ.get('FIREBASE_CREDENTIALS') or os.path.join(os.path.dirname(__file__), 'formaafrique-firebase-service-account.json'))
    firebase_admin.initialize_app(cred)
    db = firestore.client()
    print("Firebase Admin SDK and Firestore Client Initialized Successfully.")
except Exception as e:
    print(f"CRITICAL ERROR initializing Firebase Admin SDK: {e}")

ROLE_COOKIE = 'formaafrique-role'
PAYOUT_METHODS = revenue.PAYOUT_METHODS
MAINTENANCE_EXEMPT = {'static', 'login_page', 'session_login', 'session_logout'}
FIREBASE_WEB_CONFIG = {'apiKey': os.environ.get('FIREBASE_API_KEY', ''), 'authDomain': os.environ.get('FIREBASE_AUTH_DOMAIN', ''), 'projectId': os.environ.get('FIREBASE_PROJECT_ID', '')}

@app.context_processor
def utility_processor():
    return dict(floor=math.floor, ceil=math.ceil, status_labels=catalog.STATUS_LABELS, firebase_web_config=FIREBASE_WEB_CONFIG)

@app.template_filter('format_datetime')
def format_datetime(timestamp):
    if isinstance(timestamp, datetime.datetime):
        return timestamp.strftime('%d/%m/%Y')
    return timestamp or '' # Fallback for unexpected types

@app.template_filter('format_currency')
def format_currency(amount): return revenue.format_currency(amount)

@app.template_filter()
def nl2br(value): return Markup(re.sub(r'\r\n|\r|\n', '<br>\n', escape(value))) if isinstance(value, str) else value

def get_current_user():
    if 'user_id' not in session or db is None: return None
    if 'current_user' not in g:
        user_doc = db.collection('users').document(session['user_id']).get()
        g.current_user = build_user_profile(session['user_id'], session.get('email'), user_doc.to_dict() if user_doc.exists else None)
        if session.get('role') and session['role'] not in g.current_user['availableRoles']:
            session['role'] = resolve_active_role(user_doc.to_dict() if user_doc.exists else None, session['role'])
        g.current_user['activeRole'] = session.get('role') or 'student'
    return g.current_user

@app.context_processor
def inject_user_data():
    try:
        banner = platform_settings.announcement(db) if db is not None else ''
        return dict(current_user=get_current_user(), active_role=session.get('role'), announcement=banner)
    except Exception:
        traceback.print_exc()
        return dict(current_user=None, active_role=None, announcement='')

@app.before_request
def maintenance_gate():
    if db is None or request.endpoint in MAINTENANCE_EXEMPT: return None
    try:
        g.settings = platform_settings.load_settings(db)
    except Exception:
        traceback.print_exc(); return None
    if g.settings['platform'].get('maintenanceMode') and (get_current_user() or {}).get('role') != 'admin':
        return render_template('maintenance.html', page_title="Maintenance"), 503
    return None

def current_settings():
    if 'settings' not in g: g.settings = platform_settings.load_settings(db)
    return g.settings

def wants_json():
    return request.headers.get('X-Requested-With') == 'XMLHttpRequest' or request.is_json

@app.errorhandler(FirestorePermissionError)
def handle_permission_error(error):
    print(f"Permission error: {error} payload={error.request_data}")
    if wants_json(): return jsonify({'status': 'error', 'message': "Vous n'avez pas la permission d'effectuer cette action."}), 403
    flash("Vous n'avez pas la permission d'effectuer cette action.", "error")
    return redirect(url_for('dashboard_page'))

@app.errorhandler(404)
def page_not_found(error): return render_template('not_found.html', page_title="Page introuvable"), 404

def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            if wants_json():
                return jsonify({'status': 'error', 'message': 'Authentification requise.'}), 401
            return redirect(url_for('login_page', next=request.url))
        if request.endpoint not in ['select_role_page', 'session_logout', 'static'] and not session.get('role'):
            flash("Veuillez compléter votre profil.", "info"); return redirect(url_for('select_role_page'))
        return f(*args, **kwargs)
    return decorated_function

def guest_only(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' in session: return redirect(url_for('dashboard_page'))
        return f(*args, **kwargs)
    return decorated_function

def admin_required(f):
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if (get_current_user() or {}).get('role') != 'admin':
            if wants_json(): return jsonify({'status': 'error', 'message': 'Accès réservé aux administrateurs.'}), 403
            flash("Accès refusé. Cette page est réservée aux administrateurs.", "error")
            return redirect(url_for('dashboard_page'))
        return f(*args, **kwargs)
    return decorated_function

def instructor_required(f):
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        user = get_current_user() or {}
        if session.get('role') != 'instructor' or 'instructor' not in user.get('availableRoles', []):
            flash("Passez en mode instructeur pour accéder à cette page.", "error"); return redirect(url_for('dashboard_page'))
        return f(*args, **kwargs)
    return decorated_function

def get_public_id_from_url(url):
    try:
        parts = url.split("/"); filename = parts[-1]; folder = parts[-2]
        return f"{folder}/{filename.rsplit('.', 1)[0]}"
    except (AttributeError, IndexError): return None

def destroy_cloudinary_asset(url):
    if url and 'cloudinary' in url and (public_id := get_public_id_from_url(url)): cloudinary.uploader.destroy(public_id)

def uploaded_file(field):
    file = request.files.get(field)
    return file if file and file.filename != '' else None

def check_course_ownership(course_id, user_id):
    course = catalog.get_course(db, course_id)
    if not course: flash("Cours introuvable.", "error"); return None, redirect(url_for('instructor_courses_page'))
    if course.get('instructorId') != user_id: flash("Vous ne pouvez gérer que vos propres cours.", "error"); return None, redirect(url_for('instructor_courses_page'))
    return course, None

# --- Auth & profile ---

@app.route('/login')
@guest_only
def login_page(): return render_template('auth/login.html', page_title="Connexion")

@app.route('/register')
@guest_only
def register_page(): return render_template('auth/register.html', page_title="Inscription")

@app.route('/forgot-password')
@guest_only
def forgot_password_page(): return render_template('auth/forgot_password.html', page_title="Mot de passe oublié")

@app.route('/auth/session_login', methods=['POST'])
def session_login():
    try:
        id_token = request.headers.get('Authorization', '').split('Bearer ')[-1]
        decoded_token = admin_auth.verify_id_token(id_token)
        session.clear()
        session['user_id'], session['email'] = decoded_token['uid'], decoded_token.get('email')
        user_doc = db.collection('users').document(session['user_id']).get()
        if user_doc.exists:
            user_data = user_doc.to_dict()
            if user_data.get('status') == 'suspended': session.clear(); return jsonify({"error": "Ce compte a été suspendu."}), 403
            session['role'] = resolve_active_role(user_data, request.cookies.get(ROLE_COOKIE))
        else: session['role'] = None
        response = jsonify({"status": "success", "redirect": '/dashboard' if session.get('role') else '/select-role'})
        if session.get('role'): response.set_cookie(ROLE_COOKIE, session['role'], samesite='Lax')
        return response, 200
    except admin_auth.InvalidIdTokenError: return jsonify({"error": "Jeton invalide, veuillez vous reconnecter."}), 401
    except Exception: traceback.print_exc(); return jsonify({"error": "Échec de l'authentification."}), 401

@app.route('/auth/session_logout', methods=['POST'])
def session_logout():
    session.clear(); return jsonify({"status": "success"}), 200

@app.route('/select-role', methods=['GET', 'POST'])
@login_required
def select_role_page():
    if db.collection('users').document(session['user_id']).get().exists:
        if not session.get('role'): session['role'] = resolve_active_role(get_current_user(), request.cookies.get(ROLE_COOKIE))
        return redirect(url_for('dashboard_page'))
    if request.method == 'POST':
        role, full_name = request.form.get('role'), request.form.get('full_name', '').strip()
        if role not in ['student', 'instructor']: flash("Veuillez choisir un rôle.", 'error'); return redirect(request.url)
        if role == 'instructor' and not current_settings()['platform'].get('allowInstructorSignup', True):
            flash("Les inscriptions d'instructeurs sont fermées pour le moment.", 'error'); return redirect(request.url)
        try:
            user_id, email = session.get('user_id'), session.get('email')
            db.collection('users').document(user_id).set(new_user_document(user_id, email, full_name, role))
            session['role'] = role
            return redirect(url_for('dashboard_page'))
        except Exception: traceback.print_exc(); flash("Une erreur est survenue.", "error"); return redirect(request.url)
    return render_template('auth/select_role.html', page_title="Choisissez votre rôle")

@app.route('/switch-role', methods=['POST'])
@login_required
def switch_role_action():
    user = get_current_user()
    session['role'] = switch_role(user['availableRoles'], session.get('role'), request.form.get('role'))
    response = redirect(url_for('admin_dashboard_page') if session['role'] == 'admin' else url_for('dashboard_page'))
    response.set_cookie(ROLE_COOKIE, session['role'], samesite='Lax')
    return response

@app.route('/profile/edit', methods=['GET', 'POST'])
@login_required
def edit_profile_page():
    user_ref = db.collection('users').document(session['user_id'])
    if request.method == 'POST':
        updated_data = {
            'fullName': request.form.get('full_name', '').strip(), 'bio': request.form.get('bio', '').strip(),
            'socialLinks': {k: request.form.get(k, '').strip() for k in ('website', 'twitter', 'linkedin', 'youtube')},
            'payoutInfo': {'mobileMoneyNumber': request.form.get('mobile_money_number', '').strip()},
            'countryOrigin': request.form.get('country_origin', '').strip(), 'countryCurrent': request.form.get('country_current', '').strip(),
            'updatedAt': firestore.SERVER_TIMESTAMP,
        }
        if not updated_data['fullName']: flash("Le nom complet est requis.", "error"); return redirect(url_for('edit_profile_page'))
        if image_file := uploaded_file('profile_image'):
            try:
                destroy_cloudinary_asset((user_ref.get().to_dict() or {}).get('profilePictureURL'))
                upload_result = cloudinary.uploader.upload(image_file, folder="formaafrique_avatars", transformation=[{'width': 400, 'height': 400, 'crop': 'fill', 'gravity': 'face'}])
                updated_data['profilePictureURL'] = upload_result.get('secure_url')
            except Exception: traceback.print_exc(); flash("Le téléversement de l'image a échoué.", "error"); return redirect(url_for('edit_profile_page'))
        user_ref.update(updated_data)
        flash("Profil mis à jour avec succès !", "success"); return redirect(url_for('dashboard_page'))
    return render_template('auth/edit_profile.html', page_title="Modifier mon profil", user=user_ref.get().to_dict() or {})

@app.route('/devenir-instructeur', methods=['GET', 'POST'])
@login_required
def instructor_application_page():
    user = get_current_user()
    if 'instructor' in user['availableRoles']: flash("Vous êtes déjà instructeur.", "info"); return redirect(url_for('dashboard_page'))
    if not current_settings()['platform'].get('allowInstructorSignup', True):
        flash("Les candidatures d'instructeurs sont fermées pour le moment.", "error"); return redirect(url_for('dashboard_page'))
    if request.method == 'POST':
        motivation = request.form.get('motivation', '').strip()
        if len(motivation) < 20: flash("Expliquez votre motivation en quelques phrases (20 caractères minimum).", "error"); return redirect(request.url)
        doc_url = ''
        if doc_file := uploaded_file('verification_doc'):
            try: doc_url = cloudinary.uploader.upload(doc_file, folder="formaafrique_verifications", resource_type='auto').get('secure_url')
            except Exception: traceback.print_exc(); flash("Le téléversement du document a échoué.", "error"); return redirect(request.url)
        try:
            db.collection('users').document(session['user_id']).update({
                'role': 'instructor', 'isInstructorApproved': False,
                'instructorApplication': {'motivation': motivation, 'verificationDocUrl': doc_url, 'submittedAt': firestore.SERVER_TIMESTAMP},
            })
            flash("Candidature envoyée ! Un administrateur va l'examiner.", "success")
        except Exception: traceback.print_exc(); flash("Une erreur est survenue.", "error")
        return redirect(url_for('dashboard_page'))
    return render_template('auth/instructor_application.html', page_title="Devenir instructeur")

# --- Public pages ---

@app.route('/')
def home():
    courses = []
    try: courses = catalog.popular_courses(db)
    except Exception: flash("Impossible de charger les cours. Un index Firestore est peut-être en cours de création.", "error"); traceback.print_exc()
    return render_template('index.html', courses=courses)

@app.route('/cgu')
def terms_page(): return render_template('legal.html', page_title="Conditions générales d'utilisation", content=current_settings()['legal']['termsOfService'])

@app.route('/mentions-legales')
def legal_notice_page(): return render_template('legal.html', page_title="Mentions légales", content=current_settings()['legal']['privacyPolicy'])

@app.route('/dashboard')
@login_required
def dashboard_page():
    role = session.get('role')
    if role == 'admin': return redirect(url_for('admin_dashboard_page'))
    try:
        if role == 'instructor':
            return render_template('dashboards/instructor.html', page_title="Tableau de bord", stats=revenue.instructor_dashboard(db, session['user_id']))
        return render_template('dashboards/student.html', page_title="Tableau de bord", enrollments=learning.student_enrollments(db, session['user_id']), courses=catalog.popular_courses(db, limit=8))
    except Exception: traceback.print_exc(); flash("Impossible de charger le tableau de bord.", "error"); return render_template('dashboards/student.html', page_title="Tableau de bord", enrollments=[], courses=[])

@app.route('/search')
def search_page():
    term, active_filter = request.args.get('q', '').strip(), request.args.get('filter', catalog.ALL_FILTER)
    try: results = catalog.search_courses(db, term, active_filter)
    except Exception: traceback.print_exc(); flash("Une erreur est survenue pendant la recherche.", "error"); results = []
    return render_template('courses/search.html', page_title="Rechercher", results=results, term=term, active_filter=active_filter,
                           filters=[catalog.ALL_FILTER, catalog.FREE_FILTER] + catalog.COURSE_CATEGORIES)

@app.route('/course/<string:course_id>')
def course_detail_page(course_id):
    try:
        course = catalog.get_course(db, course_id)
        if not course: flash("Cours introuvable.", "error"); return redirect(url_for('search_page'))
        user = get_current_user() or {}
        is_admin, is_owner = user.get('role') == 'admin', course.get('instructorId') == user.get('uid')
        if course.get('status') != 'Published' and not (is_admin or is_owner):
            flash("Désolé, ce cours n'est pas disponible.", "error"); return redirect(url_for('search_page'))
        sections = learning.load_curriculum(db, course_id)
        reviews = catalog.course_reviews(db, course_id)
        enrollment = learning.get_enrollment(db, user['uid'], course_id) if user else None
        instructor_doc = db.collection('users').document(course['instructorId']).get()
        return render_template('courses/detail.html', page_title=course.get('title'), course=course, sections=sections, stats=learning.course_stats(sections),
                               reviews=reviews, review_summary=catalog.review_summary(reviews), enrollment=enrollment, instructor=instructor_doc.to_dict() or {},
                               in_wishlist=catalog.is_in_wishlist(db, user['uid'], course_id) if user else False)
    except Exception as e:
        traceback.print_exc(); flash(f"Erreur lors du chargement du cours : {e}", "error"); return redirect(url_for('search_page'))

@app.route('/course/<string:course_id>/enroll', methods=['POST'])
@login_required
def enroll_free(course_id):
    course = catalog.get_course(db, course_id)
    if not course or course.get('status') != 'Published': flash("Cours introuvable.", "error"); return redirect(url_for('search_page'))
    if float(course.get('price') or 0) > 0: return redirect(url_for('checkout_page', courseId=course_id))
    try:
        _, created = learning.enroll_student(db, session['user_id'], course)
        if not created: flash("Vous êtes déjà inscrit à ce cours.", "info"); return redirect(url_for('course_player_page', course_id=course_id))
        instructor_doc = db.collection('users').document(course['instructorId']).get()
        emails.send_enrollment_emails(get_current_user(), course, instructor_doc.to_dict() or {})
        flash(f'Inscription réussie ! Vous avez maintenant accès à "{course.get("title")}".', "success")
        return redirect(url_for('course_player_page', course_id=course_id, newEnrollment='true'))
    except learning.EnrollmentError as e: flash(str(e), "error")
    except FirestorePermissionError: raise
    except Exception: traceback.print_exc(); flash("L'inscription a échoué.", "error")
    return redirect(url_for('course_detail_page', course_id=course_id))

@app.route('/course/<string:course_id>/wishlist', methods=['POST'])
@login_required
def toggle_wishlist(course_id):
    try:
        added = catalog.toggle_wishlist(db, session['user_id'], course_id)
        return jsonify({'status': 'success', 'inWishlist': added, 'message': "Ajouté à votre liste de souhaits." if added else "Retiré de votre liste de souhaits."})
    except Exception: traceback.print_exc(); return jsonify({'status': 'error', 'message': 'Erreur interne.'}), 500

@app.route('/liste-de-souhaits')
@login_required
def wishlist_page():
    try: courses = catalog.wishlist_courses(db, session['user_id'])
    except Exception: traceback.print_exc(); flash("Impossible de charger votre liste de souhaits.", "error"); courses = []
    return render_template('courses/wishlist.html', page_title="Liste de souhaits", courses=courses)

@app.route('/course/<string:course_id>/review', methods=['POST'])
@login_required
def submit_review(course_id):
    try:
        is_enrolled = learning.get_enrollment(db, session['user_id'], course_id) is not None
        catalog.submit_review(db, course_id, session['user_id'], request.form.get('rating'), request.form.get('comment'), is_enrolled)
        flash("Avis publié. Merci !", "success")
    except catalog.CourseError as e: flash(str(e), "error")
    except Exception: traceback.print_exc(); flash("Erreur lors de l'envoi de votre avis.", "error")
    return redirect(url_for('course_detail_page', course_id=course_id))

@app.route('/instructor/<string:instructor_id>')
def instructor_profile_page(instructor_id):
    try:
        user_doc = db.collection('users').document(instructor_id).get()
        if not user_doc.exists or user_doc.to_dict().get('role') not in ('instructor', 'admin'):
            flash("Profil instructeur introuvable.", "error"); return redirect(url_for('search_page'))
        instructor = user_doc.to_dict()
        return render_template('instructors/profile.html', page_title=instructor.get('fullName'), instructor=instructor, profile=catalog.instructor_public_profile(db, instructor_id))
    except Exception: traceback.print_exc(); flash("Erreur lors du chargement du profil.", "error"); return redirect(url_for('search_page'))

# --- Course player ---

@app.route('/courses/<string:course_id>')
@login_required
def course_player_page(course_id):
    try:
        course = catalog.get_course(db, course_id)
        if not course: flash("Cours introuvable.", "error"); return redirect(url_for('search_page'))
        enrollment = learning.get_enrollment(db, session['user_id'], course_id)
        if not enrollment:
            flash("Accès refusé. Vous devez être inscrit à ce cours.", "error"); return redirect(url_for('course_detail_page', course_id=course_id))
        sections = learning.load_curriculum(db, course_id)
        lectures = learning.flatten_lectures(sections)
        active = learning.find_lecture(lectures, request.args.get('lesson')) if request.args.get('lesson') else learning.resume_lecture(enrollment, lectures)
        return render_template('courses/player.html', page_title=course.get('title'), course=course, sections=sections, active_lesson=active, enrollment=enrollment,
                               completed=set(enrollment.get('completedLessons') or []), progress=learning.compute_progress(enrollment.get('completedLessons'), lectures),
                               total_lessons=len(lectures), resources=catalog.course_resources(db, course_id))
    except Exception: traceback.print_exc(); flash("Erreur lors du chargement du cours.", "error"); return redirect(url_for('dashboard_page'))

@app.route('/courses/<string:course_id>/lessons/<string:lecture_id>/complete', methods=['POST'])
@login_required
def complete_lesson(course_id, lecture_id):
    try:
        enrollment = learning.get_enrollment(db, session['user_id'], course_id)
        if not enrollment: return jsonify({'status': 'error', 'message': 'Vous devez être inscrit à ce cours.'}), 403
        lectures = learning.flatten_lectures(learning.load_curriculum(db, course_id))
        result = learning.complete_lesson(db, enrollment, lectures, lecture_id)
        message = "Félicitations ! Vous avez terminé la dernière leçon de ce cours." if result.finished else f"Votre progression est maintenant de {result.progress}%."
        return jsonify({'status': 'success', 'progress': result.progress, 'alreadyCompleted': result.already_completed, 'finished': result.finished,
                        'nextLessonId': result.next_lecture['id'] if result.next_lecture else None, 'message': message})
    except learning.EnrollmentError as e: return jsonify({'status': 'error', 'message': str(e)}), 404
    except FirestorePermissionError: raise
    except Exception: traceback.print_exc(); return jsonify({'status': 'error', 'message': 'Erreur interne.'}), 500

# --- Instructor space ---

@app.route('/instructor/courses')
@instructor_required
def instructor_courses_page():
    try: courses = catalog.instructor_courses(db, session['user_id'])
    except Exception: traceback.print_exc(); flash("Impossible de charger vos cours.", "error"); courses = []
    return render_template('instructor/courses.html', page_title="Mes cours", courses=courses)

@app.route('/instructor/courses/create', methods=['GET', 'POST'])
@instructor_required
def create_course_page():
    if request.method == 'POST':
        image_url = None
        if image_file := uploaded_file('course_image'):
            try: image_url = cloudinary.uploader.upload(image_file, folder="formaafrique_courses", transformation=[{'width': 1000, 'height': 750, 'crop': 'limit'}]).get('secure_url')
            except Exception: traceback.print_exc(); flash("Le téléversement de l'image a échoué.", "error"); return redirect(request.url)
        try:
            course_id = catalog.create_course(db, get_current_user(), request.form.get('title'), image_url)
            flash("Cours créé avec succès ! Complétez maintenant ses informations.", "success")
            return redirect(url_for('edit_course_page', course_id=course_id))
        except catalog.CourseError as e: flash(str(e), "error")
        except FirestorePermissionError: raise
        except Exception: traceback.print_exc(); flash("Erreur lors de l'enregistrement du cours.", "error")
    return render_template('instructor/course_create.html', page_title="Créer un cours")

@app.route('/instructor/courses/edit/<string:course_id>', methods=['GET', 'POST'])
@instructor_required
def edit_course_page(course_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    if request.method == 'POST':
        try:
            payload = catalog.course_update_payload(request.form)
            if image_file := uploaded_file('course_image'):
                destroy_cloudinary_asset(course.get('imageUrl'))
                payload['imageUrl'] = cloudinary.uploader.upload(image_file, folder="formaafrique_courses", transformation=[{'width': 1000, 'height': 750, 'crop': 'limit'}]).get('secure_url')
            catalog.update_course(db, course_id, payload)
            flash(f'Cours "{payload["title"]}" mis à jour.', "success"); return redirect(url_for('edit_course_page', course_id=course_id))
        except catalog.CourseError as e: flash(str(e), "error")
        except FirestorePermissionError: raise
        except Exception: traceback.print_exc(); flash("Erreur lors de la mise à jour du cours.", "error")
    return render_template('instructor/course_form.html', page_title="Modifier le cours", course=course, categories=catalog.COURSE_CATEGORIES)

@app.route('/instructor/courses/<string:course_id>/submit', methods=['POST'])
@instructor_required
def submit_course_for_review(course_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    try: catalog.submit_for_review(db, course); flash("Cours soumis à la révision.", "success")
    except catalog.CourseError as e: flash(str(e), "error")
    except Exception: traceback.print_exc(); flash("Une erreur est survenue.", "error")
    return redirect(url_for('instructor_courses_page'))

@app.route('/instructor/courses/<string:course_id>/delete', methods=['POST'])
@instructor_required
def delete_course(course_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    try:
        destroy_cloudinary_asset(course.get('imageUrl'))
        catalog.delete_course(db, course_id); flash(f"Cours '{course.get('title')}' supprimé.", 'success')
    except Exception: traceback.print_exc(); flash("Erreur lors de la suppression du cours.", 'error')
    return redirect(url_for('instructor_courses_page'))

@app.route('/instructor/courses/edit/<string:course_id>/content')
@instructor_required
def course_content_page(course_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    return render_template('instructor/course_content.html', page_title="Programme du cours", course=course, sections=learning.load_curriculum(db, course_id),
                           resources=catalog.course_resources(db, course_id))

@app.route('/instructor/courses/edit/<string:course_id>/sections', methods=['POST'])
@instructor_required
def add_section(course_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    try: catalog.add_section(db, course_id, request.form.get('title')); flash("Section ajoutée.", "success")
    except catalog.CourseError as e: flash(str(e), "error")
    return redirect(url_for('course_content_page', course_id=course_id))

@app.route('/instructor/courses/edit/<string:course_id>/sections/<string:section_id>/rename', methods=['POST'])
@instructor_required
def rename_section(course_id, section_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    try: catalog.rename_section(db, course_id, section_id, request.form.get('title')); flash("Section renommée.", "success")
    except catalog.CourseError as e: flash(str(e), "error")
    return redirect(url_for('course_content_page', course_id=course_id))

@app.route('/instructor/courses/edit/<string:course_id>/sections/<string:section_id>/delete', methods=['POST'])
@instructor_required
def delete_section(course_id, section_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    catalog.delete_section(db, course_id, section_id); flash("Section supprimée.", "success")
    return redirect(url_for('course_content_page', course_id=course_id))

@app.route('/instructor/courses/edit/<string:course_id>/sections/<string:section_id>/move/<direction>', methods=['POST'])
@instructor_required
def move_section(course_id, section_id, direction):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    try:
        if not catalog.move_section(db, course_id, section_id, direction): flash("Impossible de déplacer davantage.", "info")
    except catalog.CourseError as e: flash(str(e), "error")
    return redirect(url_for('course_content_page', course_id=course_id))

@app.route('/instructor/courses/edit/<string:course_id>/sections/<string:section_id>/lectures', methods=['POST'])
@instructor_required
def add_lecture(course_id, section_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    try: catalog.add_lecture(db, course_id, section_id, request.form); flash("Leçon ajoutée.", "success")
    except catalog.CourseError as e: flash(str(e), "error")
    return redirect(url_for('course_content_page', course_id=course_id))

@app.route('/instructor/courses/edit/<string:course_id>/sections/<string:section_id>/lectures/<string:lecture_id>/edit', methods=['POST'])
@instructor_required
def edit_lecture(course_id, section_id, lecture_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    try: catalog.update_lecture(db, course_id, section_id, lecture_id, request.form); flash("Leçon mise à jour.", "success")
    except catalog.CourseError as e: flash(str(e), "error")
    except Exception: traceback.print_exc(); flash("Leçon introuvable.", "error")
    return redirect(url_for('course_content_page', course_id=course_id))

@app.route('/instructor/courses/edit/<string:course_id>/sections/<string:section_id>/lectures/<string:lecture_id>/delete', methods=['POST'])
@instructor_required
def delete_lecture(course_id, section_id, lecture_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    catalog.delete_lecture(db, course_id, section_id, lecture_id); flash("Leçon supprimée.", "success")
    return redirect(url_for('course_content_page', course_id=course_id))

@app.route('/instructor/courses/edit/<string:course_id>/resources', methods=['POST'])
@instructor_required
def add_resource(course_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    try: catalog.add_resource(db, course_id, request.form.get('title'), request.form.get('url')); flash("Ressource ajoutée.", "success")
    except catalog.CourseError as e: flash(str(e), "error")
    return redirect(url_for('course_content_page', course_id=course_id))

@app.route('/instructor/courses/edit/<string:course_id>/resources/<string:resource_id>/delete', methods=['POST'])
@instructor_required
def delete_resource(course_id, resource_id):
    course, error = check_course_ownership(course_id, session['user_id'])
    if error: return error
    try: catalog.delete_resource(db, course_id, resource_id); flash("Ressource supprimée.", "success")
    except catalog.CourseError as e: flash(str(e), "error")
    return redirect(url_for('course_content_page', course_id=course_id))

@app.route('/instructor/students')
@instructor_required
def instructor_students_page():
    try: roster = learning.instructor_roster(db, session['user_id'])
    except Exception: traceback.print_exc(); flash("Impossible de charger vos étudiants.", "error"); roster = []
    return render_template('instructor/students.html', page_title="Mes étudiants", roster=roster)

@app.route('/mes-revenus')
@instructor_required
def revenue_page():
    settings = current_settings()
    try:
        payments, payouts, summary = revenue.instructor_summary(db, session['user_id'], platform_settings.commission_rate(settings))
    except Exception:
        traceback.print_exc(); flash("Impossible de charger vos transactions.", "error")
        payments, payouts, summary = [], [], revenue.summarize_revenue([], [], platform_settings.commission_rate(settings))
    return render_template('instructor/revenue.html', page_title="Mes revenus", payments=payments, payouts=payouts, summary=summary,
                           minimum=platform_settings.minimum_payout(settings), methods=PAYOUT_METHODS)

@app.route('/mes-revenus/retrait', methods=['POST'])
@instructor_required
def request_payout():
    settings = current_settings()
    try:
        revenue.request_payout(db, session['user_id'], request.form.get('amount'), request.form.get('method'),
                               platform_settings.commission_rate(settings), platform_settings.minimum_payout(settings))
        flash("Demande de retrait soumise. Votre demande est en cours de traitement.", "success")
    except revenue.PayoutRejected as e: flash(str(e), "error")
    except FirestorePermissionError: raise
    except Exception: traceback.print_exc(); flash("La demande de retrait a échoué.", "error")
    return redirect(url_for('revenue_page'))

# --- Checkout ---

@app.route('/paiements')
@login_required
def checkout_page():
    course = catalog.get_course(db, request.args.get('courseId', ''))
    if not course: flash("Aucun cours sélectionné.", "error"); return redirect(url_for('dashboard_page'))
    promo = find_promo_code(db, request.args.get('promo'))
    return render_template('payments/checkout.html', page_title="Paiement", course=course, promo=promo, price=discounted_price(course.get('price'), promo))

@app.route('/paiements/promo', methods=['POST'])
@login_required
def apply_promo_code():
    data = request.get_json(silent=True) or request.form
    course = catalog.get_course(db, data.get('courseId', ''))
    if not course: return jsonify({'status': 'error', 'message': 'Cours introuvable.'}), 404
    promo = find_promo_code(db, data.get('code'))
    if not promo: return jsonify({'status': 'error', 'message': 'Ce code promo est invalide ou a expiré.'}), 404
    return jsonify({'status': 'success', 'code': promo['code'], 'discountPercentage': promo['discountPercentage'], 'price': discounted_price(course.get('price'), promo),
                    'message': f"Vous avez obtenu une réduction de {promo['discountPercentage']:g}%."})

@app.route('/paiements', methods=['POST'])
@login_required
def process_payment():
    course_id = request.form.get('courseId', '')
    course = catalog.get_course(db, course_id)
    if not course: flash("Cours introuvable.", "error"); return redirect(url_for('dashboard_page'))
    if learning.get_enrollment(db, session['user_id'], course_id):
        flash("Vous êtes déjà inscrit à ce cours.", "info"); return redirect(url_for('course_player_page', course_id=course_id))
    if float(course.get('price') or 0) == 0: return enroll_free(course_id)
    student = get_current_user()
    try:
        payment = start_checkout(db, student, course, find_promo_code(db, request.form.get('promoCode')))
        if not finalize_payment(db, payment, MonerooClient.from_env().verify(payment['paymentId']), student['uid'], course):
            return redirect(url_for('payment_error_page', courseId=course_id))
        instructor_doc = db.collection('users').document(course['instructorId']).get()
        emails.send_enrollment_emails(student, course, instructor_doc.to_dict() or {})
        return redirect(url_for('payment_success_page', courseId=course_id))
    except PaymentError as e: flash(str(e), "error")
    except FirestorePermissionError: raise
    except Exception: traceback.print_exc(); flash("Le paiement n'a pas pu être traité.", "error")
    return redirect(url_for('payment_error_page', courseId=course_id))

@app.route('/payment/success')
@login_required
def payment_success_page(): return render_template('payments/success.html', page_title="Paiement réussi", course=catalog.get_course(db, request.args.get('courseId', '')) or {})

@app.route('/payment/error')
@login_required
def payment_error_page(): return render_template('payments/error.html', page_title="Échec du paiement", course=catalog.get_course(db, request.args.get('courseId', '')) or {})

# --- Messaging ---

@app.route('/messages')
@login_required
def messages_page():
    try: chats, partners = messaging.list_chats(db, session['user_id']), messaging.chat_partners(db, session['user_id'], session.get('role'))
    except Exception: traceback.print_exc(); flash("Impossible de charger vos messages.", "error"); chats, partners = [], []
    return render_template('messages/inbox.html', page_title="Messagerie", chats=chats, partners=partners)

@app.route('/messages/start', methods=['POST'])
@login_required
def start_chat():
    try: return redirect(url_for('chat_page', chat_id=messaging.start_chat(db, session['user_id'], request.form.get('user_id'))))
    except messaging.ChatError as e: flash(str(e), "error")
    except FirestorePermissionError: raise
    except Exception: traceback.print_exc(); flash("Impossible de démarrer la conversation.", "error")
    return redirect(url_for('messages_page'))

@app.route('/messages/<string:chat_id>', methods=['GET', 'POST'])
@login_required
def chat_page(chat_id):
    try: chat = messaging.get_chat(db, chat_id, session['user_id'])
    except messaging.ChatError as e:
        if wants_json(): return jsonify({'status': 'error', 'message': str(e)}), 404
        flash(str(e), "error"); return redirect(url_for('messages_page'))
    if request.method == 'POST':
        try:
            message_id = messaging.send_message(db, chat, session['user_id'], request.form.get('text'))
            if wants_json(): return jsonify({'status': 'success', 'id': message_id})
        except messaging.ChatError as e:
            if wants_json(): return jsonify({'status': 'error', 'message': str(e)}), 400
            flash(str(e), "error")
        return redirect(url_for('chat_page', chat_id=chat_id))
    messaging.mark_as_read(db, chat, session['user_id'])
    other_doc = db.collection('users').document(messaging.other_participant(chat, session['user_id']) or 'unknown').get()
    return render_template('messages/chat.html', page_title="Conversation", chat=chat, messages=messaging.chat_messages(db, chat_id), other=other_doc.to_dict() or {})

@app.route('/messages/<string:chat_id>/feed')
@login_required
def chat_feed(chat_id):
    try: chat = messaging.get_chat(db, chat_id, session['user_id'])
    except messaging.ChatError as e: return jsonify({'status': 'error', 'message': str(e)}), 404
    messaging.mark_as_read(db, chat, session['user_id'])
    feed = [{'id': m['id'], 'text': m.get('text'), 'senderId': m.get('senderId'), 'status': m.get('status'),
             'createdAt': m['createdAt'].isoformat() if isinstance(m.get('createdAt'), datetime.datetime) else None} for m in messaging.chat_messages(db, chat_id)]
    return jsonify({'status': 'success', 'messages': feed})

# --- Support ---

@app.route('/support', methods=['GET', 'POST'])
@login_required
def support_page():
    if request.method == 'POST':
        try:
            ticket_id = support.open_ticket(db, session['user_id'], request.form.get('subject'), request.form.get('message'), request.form.get('course_id'), request.form.get('category'))
            flash("Votre demande a été envoyée au support.", "success"); return redirect(url_for('ticket_page', ticket_id=ticket_id))
        except support.SupportError as e: flash(str(e), "error")
        except FirestorePermissionError: raise
        except Exception: traceback.print_exc(); flash("Impossible d'envoyer votre demande.", "error")
    try: tickets, enrollments = support.user_tickets(db, session['user_id']), learning.student_enrollments(db, session['user_id'])
    except Exception: traceback.print_exc(); tickets, enrollments = [], []
    return render_template('support/tickets.html', page_title="Support", tickets=tickets, enrollments=enrollments, categories=support.TICKET_CATEGORIES)

@app.route('/support/<string:ticket_id>', methods=['GET', 'POST'])
@login_required
def ticket_page(ticket_id):
    ticket = support.get_ticket(db, ticket_id)
    if not ticket or ticket.get('userId') != session['user_id']: flash("Ticket introuvable.", "error"); return redirect(url_for('support_page'))
    if request.method == 'POST':
        try: support.add_message(db, ticket_id, session['user_id'], request.form.get('text'))
        except support.SupportError as e: flash(str(e), "error")
        return redirect(url_for('ticket_page', ticket_id=ticket_id))
    return render_template('support/ticket.html', page_title=ticket.get('subject'), ticket=ticket, messages=support.ticket_messages(db, ticket_id))

# --- Admin back-office ---

@app.route('/admin/dashboard')
@admin_required
def admin_dashboard_page():
    try:
        users_count = len(list(db.collection('users').stream()))
        published = len(list(db.collection('courses').where(filter=firestore.FieldFilter('status', '==', 'Published')).stream()))
        payments = [p for p in revenue.all_payments(db) if p.get('status') == 'Completed']
        stats = {'users': users_count, 'publishedCourses': published, 'totalRevenue': sum(float(p.get('amount') or 0) for p in payments)}
        return render_template('admin/dashboard.html', page_title="Administration", stats=stats, recent_payments=payments[:5])
    except Exception: traceback.print_exc(); flash("Impossible de charger les statistiques.", "error"); return render_template('admin/dashboard.html', page_title="Administration", stats={}, recent_payments=[])

@app.route('/admin/users')
@admin_required
def manage_users_page():
    try:
        users_query = db.collection('users').order_by('createdAt', direction=firestore.Query.DESCENDING).stream()
        return render_template('admin/users.html', page_title="Utilisateurs", users=[{'uid': doc.id, **doc.to_dict()} for doc in users_query], roles=ROLES)
    except Exception: flash("Impossible de charger les utilisateurs.", "error"); traceback.print_exc(); return render_template('admin/users.html', page_title="Utilisateurs", users=[], roles=ROLES)

@app.route('/admin/user/<string:user_id>/role', methods=['POST'])
@admin_required
def change_user_role(user_id):
    role = request.form.get('role')
    if role not in ROLES: flash("Rôle invalide.", "error"); return redirect(url_for('manage_users_page'))
    if user_id == session['user_id']: flash("Vous ne pouvez pas modifier votre propre rôle.", "error"); return redirect(url_for('manage_users_page'))
    try: db.collection('users').document(user_id).update({'role': role}); flash("Rôle mis à jour.", "success")
    except Exception: flash("Une erreur est survenue.", "error"); traceback.print_exc()
    return redirect(url_for('manage_users_page'))

@app.route('/admin/user/<string:user_id>/toggle_status', methods=['POST'])
@admin_required
def toggle_user_status(user_id):
    if user_id == session['user_id']: flash("Vous ne pouvez pas suspendre votre propre compte.", "error"); return redirect(url_for('manage_users_page'))
    try:
        user_ref = db.collection('users').document(user_id); user_doc = user_ref.get()
        if user_doc.exists:
            new_status = 'active' if user_doc.to_dict().get('status') == 'suspended' else 'suspended'; user_ref.update({'status': new_status})
            flash(f"Compte {'suspendu' if new_status == 'suspended' else 'réactivé'}.", "success")
        else: flash("Utilisateur introuvable.", "error")
    except Exception: flash("Une erreur est survenue.", "error"); traceback.print_exc()
    return redirect(url_for('manage_users_page'))

@app.route('/admin/user/<string:user_id>/delete', methods=['POST'])
@admin_required
def delete_user_account(user_id):
    if user_id == session['user_id']: flash("Un administrateur ne peut pas se supprimer lui-même.", "error"); return redirect(url_for('manage_users_page'))
    try:
        admin_auth.delete_user(user_id)
        db.collection('users').document(user_id).delete()
        flash("Utilisateur supprimé.", "success")
    except admin_auth.UserNotFoundError: flash("L'utilisateur n'existe pas dans Firebase Authentication.", "error")
    except Exception as e: traceback.print_exc(); flash(str(e) or "Une erreur inconnue est survenue.", "error")
    return redirect(url_for('manage_users_page'))

@app.route('/admin/courses')
@admin_required
def manage_courses_page():
    status_filter = request.args.get('status', 'Tous')
    try:
        query = db.collection('courses')
        if status_filter in catalog.COURSE_STATUSES: query = query.where(filter=firestore.FieldFilter('status', '==', status_filter))
        courses = catalog.attach_instructors(db, [{'id': doc.id, **doc.to_dict()} for doc in query.stream()])
        return render_template('admin/courses.html', page_title="Cours", courses=courses, status_filter=status_filter, statuses=catalog.COURSE_STATUSES)
    except Exception: flash("Impossible de charger les cours.", "error"); traceback.print_exc(); return render_template('admin/courses.html', page_title="Cours", courses=[], status_filter=status_filter, statuses=catalog.COURSE_STATUSES)

@app.route('/admin/course/<string:course_id>/status', methods=['POST'])
@admin_required
def change_course_status(course_id):
    try:
        status = request.form.get('status')
        catalog.set_course_status(db, course_id, status); flash(f"Le cours est maintenant : {catalog.STATUS_LABELS[status]}", "success")
    except catalog.CourseError as e: flash(str(e), "error")
    except Exception: flash("Une erreur est survenue.", "error"); traceback.print_exc()
    return redirect(request.referrer or url_for('manage_courses_page'))

@app.route('/admin/course/<string:course_id>/delete', methods=['POST'])
@admin_required
def admin_delete_course(course_id):
    try: catalog.delete_course(db, course_id); flash("Cours supprimé.", "success")
    except Exception: flash("Une erreur est survenue.", "error"); traceback.print_exc()
    return redirect(url_for('manage_courses_page'))

@app.route('/admin/moderation')
@admin_required
def moderation_page():
    try:
        applicants = [{'uid': doc.id, **doc.to_dict()} for doc in db.collection('users').where(filter=firestore.FieldFilter('role', '==', 'instructor')).where(filter=firestore.FieldFilter('isInstructorApproved', '==', False)).stream()]
        pending = catalog.attach_instructors(db, [{'id': doc.id, **doc.to_dict()} for doc in db.collection('courses').where(filter=firestore.FieldFilter('status', '==', 'Pending Review')).stream()])
    except Exception: traceback.print_exc(); flash("Impossible de charger la file de modération.", "error"); applicants, pending = [], []
    return render_template('admin/moderation.html', page_title="Modération", applicants=applicants, pending_courses=pending)

@app.route('/admin/moderation/instructor/<string:user_id>/<decision>', methods=['POST'])
@admin_required
def moderate_instructor(user_id, decision):
    if decision not in ('approve', 'reject'): flash("Décision invalide.", "error"); return redirect(url_for('moderation_page'))
    try:
        update = {'isInstructorApproved': True} if decision == 'approve' else {'role': 'student'}
        db.collection('users').document(user_id).update(update)
        flash("Instructeur approuvé." if decision == 'approve' else "Candidature rejetée.", "success")
    except Exception: traceback.print_exc(); flash("Une erreur est survenue.", "error")
    return redirect(url_for('moderation_page'))

@app.route('/admin/moderation/course/<string:course_id>/<decision>', methods=['POST'])
@admin_required
def moderate_course(course_id, decision):
    if decision not in ('approve', 'reject'): flash("Décision invalide.", "error"); return redirect(url_for('moderation_page'))
    try:
        catalog.set_course_status(db, course_id, 'Published' if decision == 'approve' else 'Draft')
        flash("Cours publié." if decision == 'approve' else "Cours renvoyé en brouillon.", "success")
    except Exception: traceback.print_exc(); flash("Une erreur est survenue.", "error")
    return redirect(url_for('moderation_page'))

@app.route('/admin/payments')
@admin_required
def admin_payments_page():
    try: payments, payouts = revenue.all_payments(db), revenue.pending_payouts(db)
    except Exception: traceback.print_exc(); flash("Impossible de charger les paiements.", "error"); payments, payouts = [], []
    return render_template('admin/payments.html', page_title="Paiements", payments=payments, payouts=payouts, totals=revenue.platform_totals(payments))

@app.route('/admin/payout/<string:payout_id>/<decision>', methods=['POST'])
@admin_required
def process_payout(payout_id, decision):
    try:
        revenue.set_payout_status(db, payout_id, {'approve': 'valide', 'reject': 'rejete'}.get(decision, decision))
        flash("Retrait validé." if decision == 'approve' else "Retrait rejeté.", "success")
    except revenue.PayoutRejected as e: flash(str(e), "error")
    except Exception: traceback.print_exc(); flash("Une erreur est survenue.", "error")
    return redirect(url_for('admin_payments_page'))

@app.route('/admin/payments/export.csv')
@admin_required
def export_payments():
    filename = f"paiements_{datetime.date.today().isoformat()}.csv"
    return Response(revenue.payments_csv(revenue.all_payments(db)), mimetype='text/csv', headers={'Content-Disposition': f'attachment; filename={filename}'})

@app.route('/admin/support')
@admin_required
def admin_support_page():
    try: tickets, open_count = support.all_tickets(db)
    except Exception: traceback.print_exc(); flash("Impossible de charger les tickets.", "error"); tickets, open_count = [], 0
    return render_template('admin/support.html', page_title="Support", tickets=tickets, open_count=open_count)

@app.route('/admin/support/<string:ticket_id>', methods=['GET', 'POST'])
@admin_required
def admin_ticket_page(ticket_id):
    ticket = support.get_ticket(db, ticket_id)
    if not ticket: flash("Ticket introuvable.", "error"); return redirect(url_for('admin_support_page'))
    if request.method == 'POST':
        try: support.add_message(db, ticket_id, session['user_id'], request.form.get('text'))
        except support.SupportError as e: flash(str(e), "error")
        return redirect(url_for('admin_ticket_page', ticket_id=ticket_id))
    ticket_user = db.collection('users').document(ticket['userId']).get()
    return render_template('admin/ticket.html', page_title=ticket.get('subject'), ticket=ticket, messages=support.ticket_messages(db, ticket_id),
                           ticket_user=ticket_user.to_dict() or {}, course=catalog.get_course(db, ticket['courseId']) if ticket.get('courseId') else None)

@app.route('/admin/support/<string:ticket_id>/refund', methods=['POST'])
@admin_required
def refund_ticket(ticket_id):
    ticket = support.get_ticket(db, ticket_id)
    if not ticket: flash("Ticket introuvable.", "error"); return redirect(url_for('admin_support_page'))
    try:
        support.refund_ticket(db, ticket)
        flash("Remboursement traité. Le paiement a été marqué comme remboursé et l'accès de l'étudiant au cours a été révoqué.", "success")
        return redirect(url_for('admin_support_page'))
    except support.RefundError as e: flash(str(e), "error")
    except FirestorePermissionError: raise
    except Exception: traceback.print_exc(); flash("Le processus de remboursement a échoué.", "error")
    return redirect(url_for('admin_ticket_page', ticket_id=ticket_id))

@app.route('/admin/support/<string:ticket_id>/close', methods=['POST'])
@admin_required
def close_ticket(ticket_id):
    try: support.close_ticket(db, ticket_id); flash("Ticket fermé.", "success")
    except Exception: traceback.print_exc(); flash("Une erreur est survenue.", "error")
    return redirect(url_for('admin_support_page'))

def settings_from_form(form):
    return {
        'general': {k: form.get(k, '').strip() for k in ('siteName', 'siteDescription', 'contactEmail', 'logoUrl')},
        'commercial': {'commissionRate': float(form.get('commissionRate', 0)), 'minimumPayout': float(form.get('minimumPayout', 0)), 'enableMobileMoney': form.get('enableMobileMoney') == 'on'},
        'platform': {'maintenanceMode': form.get('maintenanceMode') == 'on', 'allowInstructorSignup': form.get('allowInstructorSignup') == 'on', 'announcementMessage': form.get('announcementMessage', '').strip()},
        'legal': {'termsOfService': form.get('termsOfService', '').strip(), 'privacyPolicy': form.get('privacyPolicy', '').strip()},
    }

@app.route('/admin/settings', methods=['GET', 'POST'])
@admin_required
def admin_settings_page():
    if request.method == 'POST':
        try:
            platform_settings.save_settings(db, settings_from_form(request.form))
            flash("Paramètres sauvegardés. Les réglages globaux du site ont été mis à jour.", "success"); return redirect(url_for('admin_settings_page'))
        except ValueError as e: flash(str(e) if isinstance(e, platform_settings.SettingsError) else "Les valeurs numériques sont invalides.", "error")
        except Exception: traceback.print_exc(); flash("Impossible de sauvegarder les paramètres.", "error")
    return render_template('admin/settings.html', page_title="Paramètres", settings=platform_settings.load_settings(db))

@app.route('/admin/marketing')
@admin_required
def marketing_page():
    try: history, promo_codes = platform_settings.announcement_history(db), list_promo_codes(db)
    except Exception: traceback.print_exc(); history, promo_codes = [], []
    return render_template('admin/marketing.html', page_title="Marketing", current=platform_settings.announcement(db), history=history, promo_codes=promo_codes)

@app.route('/admin/marketing/announcement', methods=['POST'])
@admin_required
def save_announcement():
    message = request.form.get('message', '').strip()
    try: platform_settings.save_announcement(db, message); flash("Annonce publiée." if message else "Annonce retirée.", "success")
    except Exception: traceback.print_exc(); flash("Impossible de publier l'annonce.", "error")
    return redirect(url_for('marketing_page'))

@app.route('/admin/marketing/generate', methods=['POST'])
@admin_required
def generate_announcement():
    data = request.get_json(silent=True) or request.form
    try: return jsonify({'status': 'success', 'announcement': CopywritingClient().generate_announcement(data.get('topic', '')).announcement})
    except (AIUnavailable, ValueError) as e: print(f"Announcement generation failed: {e}"); return jsonify({'status': 'error', 'message': "La génération de l'annonce a échoué."}), 502

@app.route('/admin/promo-codes', methods=['POST'])
@admin_required
def create_promo():
    try: create_promo_code(db, request.form.get('code'), request.form.get('discountPercentage')); flash("Code promo créé.", "success")
    except PaymentError as e: flash(str(e), "error")
    except Exception: traceback.print_exc(); flash("Une erreur est survenue.", "error")
    return redirect(url_for('marketing_page'))

@app.route('/admin/promo-codes/<string:promo_id>/toggle', methods=['POST'])
@admin_required
def toggle_promo(promo_id):
    try: toggle_promo_code(db, promo_id); flash("Code promo mis à jour.", "success")
    except PaymentError as e: flash(str(e), "error")
    return redirect(url_for('marketing_page'))

@app.route('/admin/marketing/promo-copy', methods=['POST'])
@admin_required
def generate_promo_copy():
    data = request.get_json(silent=True) or request.form
    try:
        copy = CopywritingClient().generate_promo_copy(data.get('code', ''), data.get('discountPercentage', 0), data.get('audience'))
        return jsonify({'status': 'success', 'headline': copy.headline, 'message': copy.message})
    except (AIUnavailable, ValueError) as e: print(f"Promo copy generation failed: {e}"); return jsonify({'status': 'error', 'message': "La génération du texte promotionnel a échoué."}), 502

if __name__ == '__main__':
    app.run(debug=True, port=5000, use_reloader=False)
