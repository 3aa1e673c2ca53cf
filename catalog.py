# catalog.py
"""Courses, their content tree, search, reviews and wishlists."""
import datetime
import logging
import math

from firebase_admin import firestore

from datastore import doc_to_dict, fetch_users_by_ids, fetch_where_in, guarded, stream_dicts

logger = logging.getLogger(__name__)

COURSE_CATEGORIES = [
    "Développement Web", "Data Science", "Marketing Digital", "Entrepreneuriat", "Design",
    "Agriculture", "Finance", "Langues", "Développement Personnel", "Autre",
]
COURSE_STATUSES = ('Draft', 'Pending Review', 'Published')
STATUS_LABELS = {'Draft': 'Brouillon', 'Pending Review': 'En révision', 'Published': 'Publié'}
CONTENT_TYPES = ('video', 'ebook')
FREE_FILTER = 'Gratuit'
ALL_FILTER = 'Tous'
DEFAULT_SEARCH_LIMIT = 20


class CourseError(Exception):
    pass


def _split_lines(value):
    if isinstance(value, list): return [v.strip() for v in value if v and v.strip()]
    return [line.strip() for line in (value or '').splitlines() if line.strip()]


def get_course(db, course_id):
    doc = db.collection('courses').document(course_id).get()
    return doc_to_dict(doc) if doc.exists else None


def new_course_document(instructor_id, title, image_url=None):
    title = (title or '').strip()
    return {
        'title': title, 'titleLower': title.lower(), 'description': '', 'price': 0, 'currency': 'XOF',
        'category': '', 'status': 'Draft', 'instructorId': instructor_id, 'createdAt': firestore.SERVER_TIMESTAMP,
        'publishedAt': None, 'imageUrl': image_url or f"https://picsum.photos/seed/{datetime.datetime.now().timestamp():.0f}/600/400",
        'learningObjectives': [], 'prerequisites': [], 'targetAudience': '', 'contentType': 'video', 'isPopular': False,
    }


@guarded('courses', 'create')
def create_course(db, instructor, title, image_url=None):
    if not instructor.get('isInstructorApproved'):
        raise CourseError("Votre compte instructeur doit être approuvé pour créer un cours.")
    if len((title or '').strip()) < 5: raise CourseError("Le titre doit contenir au moins 5 caractères.")
    _, course_ref = db.collection('courses').add(new_course_document(instructor['uid'], title, image_url))
    logger.info("Course %s created by %s", course_ref.id, instructor['uid'])
    return course_ref.id


def course_update_payload(form):
    title = (form.get('title') or '').strip()
    if not title: raise CourseError("Le titre est requis.")
    try: price = float(form.get('price') or 0)
    except ValueError: raise CourseError("Le prix doit être un nombre.")
    if not math.isfinite(price): raise CourseError("Le prix doit être un nombre.")
    if price < 0: raise CourseError("Le prix ne peut pas être négatif.")
    content_type = form.get('contentType') or 'video'
    if content_type not in CONTENT_TYPES: raise CourseError("Type de contenu invalide.")
    return {
        'title': title, 'titleLower': title.lower(), 'description': (form.get('description') or '').strip(),
        'price': int(price) if price.is_integer() else price, 'category': form.get('category') or '',
        'learningObjectives': _split_lines(form.get('learningObjectives')), 'prerequisites': _split_lines(form.get('prerequisites')),
        'contentType': content_type, 'ebookUrl': (form.get('ebookUrl') or '').strip(),
        'targetAudience': (form.get('targetAudience') or '').strip(), 'updatedAt': firestore.SERVER_TIMESTAMP,
    }


@guarded('courses', 'update')
def update_course(db, course_id, payload):
    db.collection('courses').document(course_id).update(payload)


def submit_for_review(db, course):
    if course.get('status') != 'Draft': raise CourseError("Seul un brouillon peut être soumis à la révision.")
    if not course.get('description') or not course.get('category'):
        raise CourseError("Ajoutez une description et une catégorie avant de soumettre le cours.")
    db.collection('courses').document(course['id']).update({'status': 'Pending Review'})


def set_course_status(db, course_id, status):
    if status not in COURSE_STATUSES: raise CourseError(f"Statut inconnu : {status}")
    update = {'status': status}
    if status == 'Published': update['publishedAt'] = firestore.SERVER_TIMESTAMP
    db.collection('courses').document(course_id).update(update)


def delete_course(db, course_id):
    course_ref = db.collection('courses').document(course_id)
    for section in course_ref.collection('sections').stream():
        for lecture in section.reference.collection('lectures').stream(): lecture.reference.delete()
        section.reference.delete()
    course_ref.delete()


# --- Content tree ---

def _next_order(collection_ref):
    last = next(collection_ref.order_by('order', direction=firestore.Query.DESCENDING).limit(1).stream(), None)
    return last.to_dict().get('order', 0) + 1 if last else 0


def add_section(db, course_id, title):
    if not (title or '').strip(): raise CourseError("Le titre de la section est requis.")
    sections_ref = db.collection('courses').document(course_id).collection('sections')
    _, section_ref = sections_ref.add({'title': title.strip(), 'order': _next_order(sections_ref)})
    return section_ref.id


def rename_section(db, course_id, section_id, title):
    if not (title or '').strip(): raise CourseError("Le titre de la section est requis.")
    db.collection('courses').document(course_id).collection('sections').document(section_id).update({'title': title.strip()})


def delete_section(db, course_id, section_id):
    section_ref = db.collection('courses').document(course_id).collection('sections').document(section_id)
    batch = db.batch()
    for lecture in section_ref.collection('lectures').stream(): batch.delete(lecture.reference)
    batch.delete(section_ref)
    batch.commit()


def move_section(db, course_id, section_id, direction):
    """Swaps the section's order with its neighbour; returns False at either end."""
    if direction not in ('up', 'down'): raise CourseError("Direction invalide.")
    sections_ref = db.collection('courses').document(course_id).collection('sections')
    current_ref = sections_ref.document(section_id)
    current_doc = current_ref.get()
    if not current_doc.exists: raise CourseError("Section introuvable.")
    current_order = current_doc.to_dict().get('order')
    op, order_dir = ('<', firestore.Query.DESCENDING) if direction == 'up' else ('>', firestore.Query.ASCENDING)
    swap_doc = next(sections_ref.where(filter=firestore.FieldFilter('order', op, current_order)).order_by('order', direction=order_dir).limit(1).stream(), None)
    if not swap_doc: return False
    swap_order = swap_doc.to_dict().get('order')
    batch = db.batch(); batch.update(current_ref, {'order': swap_order}); batch.update(swap_doc.reference, {'order': current_order}); batch.commit()
    return True


def lecture_payload(form, index=0):
    try: duration = float(form.get('duration') or 0)
    except ValueError: raise CourseError("La durée doit être un nombre de minutes.")
    if not math.isfinite(duration) or duration < 0: raise CourseError("La durée doit être un nombre de minutes.")
    return {
        'title': (form.get('title') or '').strip() or f"Leçon {index + 1}", 'videoUrl': (form.get('videoUrl') or '').strip(),
        'duration': duration, 'isFreePreview': form.get('isFreePreview') in ('on', 'true', True),
    }


def add_lecture(db, course_id, section_id, form):
    lectures_ref = db.collection('courses').document(course_id).collection('sections').document(section_id).collection('lectures')
    order = _next_order(lectures_ref)
    payload = dict(lecture_payload(form, order), order=order)
    _, lecture_ref = lectures_ref.add(payload)
    return lecture_ref.id


def update_lecture(db, course_id, section_id, lecture_id, form):
    lecture_ref = db.collection('courses').document(course_id).collection('sections').document(section_id).collection('lectures').document(lecture_id)
    lecture_ref.update(lecture_payload(form))


def delete_lecture(db, course_id, section_id, lecture_id):
    db.collection('courses').document(course_id).collection('sections').document(section_id).collection('lectures').document(lecture_id).delete()


def course_resources(db, course_id):
    query = db.collection('resources').where(filter=firestore.FieldFilter('courseId', '==', course_id))
    return sorted(stream_dicts(query), key=lambda r: (r.get('title') or '').lower())


@guarded('resources', 'create')
def add_resource(db, course_id, title, url):
    title, url = (title or '').strip(), (url or '').strip()
    if not title or not url.startswith(('http://', 'https://')): raise CourseError("Indiquez un titre et un lien valide pour la ressource.")
    _, resource_ref = db.collection('resources').add({'courseId': course_id, 'title': title, 'url': url, 'createdAt': firestore.SERVER_TIMESTAMP})
    return resource_ref.id


def delete_resource(db, course_id, resource_id):
    resource_ref = db.collection('resources').document(resource_id)
    snapshot = resource_ref.get()
    if not snapshot.exists or snapshot.to_dict().get('courseId') != course_id: raise CourseError("Ressource introuvable.")
    resource_ref.delete()


# --- Listings & search ---

def search_courses(db, term='', active_filter=ALL_FILTER):
    query = db.collection('courses').where(filter=firestore.FieldFilter('status', '==', 'Published'))
    term = (term or '').strip().lower()
    if term:
        query = query.where(filter=firestore.FieldFilter('titleLower', '>=', term)).where(filter=firestore.FieldFilter('titleLower', '<=', term + '\uf8ff'))
    if active_filter and active_filter != ALL_FILTER:
        if active_filter == FREE_FILTER: query = query.where(filter=firestore.FieldFilter('price', '==', 0))
        else: query = query.where(filter=firestore.FieldFilter('category', '==', active_filter))
    if not term and (not active_filter or active_filter == ALL_FILTER):
        query = query.order_by('createdAt', direction=firestore.Query.DESCENDING).limit(DEFAULT_SEARCH_LIMIT)
    return attach_instructors(db, stream_dicts(query))


def popular_courses(db, limit=4):
    query = db.collection('courses').where(filter=firestore.FieldFilter('status', '==', 'Published')).order_by('isPopular', direction=firestore.Query.DESCENDING).limit(limit)
    return attach_instructors(db, stream_dicts(query))


def instructor_courses(db, instructor_id, published_only=False):
    query = db.collection('courses').where(filter=firestore.FieldFilter('instructorId', '==', instructor_id))
    if published_only: query = query.where(filter=firestore.FieldFilter('status', '==', 'Published'))
    return stream_dicts(query)


def attach_instructors(db, courses):
    instructors = fetch_users_by_ids(db, [c.get('instructorId') for c in courses])
    for course in courses: course['instructor'] = instructors.get(course.get('instructorId'), {})
    return courses


# --- Reviews ---

def review_summary(reviews):
    count = len(reviews)
    average = round(sum(r.get('rating', 0) for r in reviews) / count, 1) if count else 0
    return {'count': count, 'average': average}


def course_reviews(db, course_id):
    query = db.collection('reviews').where(filter=firestore.FieldFilter('courseId', '==', course_id))
    reviews = stream_dicts(query)
    authors = fetch_users_by_ids(db, [r.get('userId') for r in reviews])
    for review in reviews: review['user_profile'] = authors.get(review.get('userId'), {})
    min_date = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)
    return sorted(reviews, key=lambda r: r.get('createdAt') or min_date, reverse=True)


@guarded('reviews', 'create')
def submit_review(db, course_id, user_id, rating, comment, is_enrolled):
    if not is_enrolled: raise CourseError("Vous devez être inscrit à ce cours pour laisser un avis.")
    try: rating = int(rating)
    except (TypeError, ValueError): raise CourseError("La note est requise.")
    if not 1 <= rating <= 5: raise CourseError("La note doit être comprise entre 1 et 5.")
    if not (comment or '').strip(): raise CourseError("Le commentaire est requis.")
    # One review per student and course; resubmitting overwrites it.
    db.collection('reviews').document(f"{user_id}_{course_id}").set({
        'courseId': course_id, 'userId': user_id, 'rating': rating, 'comment': comment.strip(),
        'createdAt': firestore.SERVER_TIMESTAMP,
    })


def instructor_public_profile(db, instructor_id):
    courses = instructor_courses(db, instructor_id, published_only=True)
    course_ids = [c['id'] for c in courses]
    enrollments = fetch_where_in(db, 'enrollments', 'courseId', course_ids)
    reviews = fetch_where_in(db, 'reviews', 'courseId', course_ids)
    return {'courses': courses, 'studentCount': len({e.get('studentId') for e in enrollments}), 'reviews': review_summary(reviews)}


# --- Wishlist ---

def toggle_wishlist(db, user_id, course_id):
    """Returns True when the course is now in the wishlist."""
    item_ref = db.collection('users').document(user_id).collection('wishlist').document(course_id)
    if item_ref.get().exists:
        item_ref.delete(); return False
    item_ref.set({'courseId': course_id, 'addedAt': firestore.SERVER_TIMESTAMP})
    return True


def is_in_wishlist(db, user_id, course_id):
    return db.collection('users').document(user_id).collection('wishlist').document(course_id).get().exists


def wishlist_courses(db, user_id):
    items = stream_dicts(db.collection('users').document(user_id).collection('wishlist'))
    courses = []
    for item in items:
        course = get_course(db, item.get('courseId') or item['id'])
        if course: courses.append(course)
    return attach_instructors(db, courses)
