# learning.py
"""Enrollments, curriculum traversal and progress tracking."""
import logging
import math
from collections import namedtuple

from firebase_admin import firestore

from datastore import doc_to_dict, fetch_users_by_ids, get_cached, guarded, stream_dicts

logger = logging.getLogger(__name__)

LessonCompletion = namedtuple('LessonCompletion', 'progress next_lecture finished already_completed')


class EnrollmentError(Exception):
    pass


def enrollment_id(student_id, course_id):
    return f"{student_id}_{course_id}"


def _lecture_sort_key(lecture):
    return (lecture.get('order', 0), lecture.get('title', ''))


def load_curriculum(db, course_id):
    """Sections ordered by `order`, each with its lectures ordered by `order` then title."""
    sections_ref = db.collection('courses').document(course_id).collection('sections')
    sections = sorted(stream_dicts(sections_ref), key=lambda s: s.get('order', 0))
    for section in sections:
        lectures_ref = sections_ref.document(section['id']).collection('lectures')
        section['lectures'] = sorted(stream_dicts(lectures_ref), key=_lecture_sort_key)
    return sections


def flatten_lectures(sections):
    return [dict(lecture, sectionId=section['id']) for section in sections for lecture in section.get('lectures', [])]


def course_stats(sections):
    lectures = flatten_lectures(sections)
    return {'lessonCount': len(lectures), 'totalDuration': sum(float(l.get('duration') or 0) for l in lectures)}


def compute_progress(completed_lessons, lectures):
    """round(100 * completed / total), half up, counting only lectures still in the course."""
    lecture_ids = {lecture['id'] for lecture in lectures}
    if not lecture_ids: return 0
    done = len(set(completed_lessons or []) & lecture_ids)
    return int(math.floor(done * 100 / len(lecture_ids) + 0.5))


def next_lecture(lectures, current_id):
    found_current = False
    for lecture in lectures:
        if found_current: return lecture
        if lecture['id'] == current_id: found_current = True
    return None


def find_lecture(lectures, lecture_id):
    return next((lecture for lecture in lectures if lecture['id'] == lecture_id), None)


def get_enrollment(db, student_id, course_id):
    doc = db.collection('enrollments').document(enrollment_id(student_id, course_id)).get()
    return doc_to_dict(doc) if doc.exists else None


@guarded('enrollments', 'create')
def enroll_student(db, student_id, course):
    """Creates enrollments/{student}_{course} once; returns (enrollment, created)."""
    if not course.get('instructorId'): raise EnrollmentError("Les détails du cours sont incomplets.")
    enrollment_ref = db.collection('enrollments').document(enrollment_id(student_id, course['id']))
    existing = enrollment_ref.get()
    if existing.exists: return doc_to_dict(existing), False
    payload = {
        'enrollmentId': enrollment_ref.id, 'studentId': student_id, 'courseId': course['id'],
        'instructorId': course['instructorId'], 'enrollmentDate': firestore.SERVER_TIMESTAMP,
        'progress': 0, 'completedLessons': [],
    }
    enrollment_ref.set(payload)
    logger.info("Student %s enrolled in course %s", student_id, course['id'])
    return {'id': enrollment_ref.id, **payload}, True


@guarded('enrollments', 'update')
def complete_lesson(db, enrollment, lectures, lecture_id):
    if not find_lecture(lectures, lecture_id): raise EnrollmentError("Leçon introuvable dans ce cours.")
    upcoming = next_lecture(lectures, lecture_id)
    completed = list(enrollment.get('completedLessons') or [])
    if lecture_id in completed:
        return LessonCompletion(enrollment.get('progress', 0), upcoming, upcoming is None, True)
    completed.append(lecture_id)
    progress = compute_progress(completed, lectures)
    db.collection('enrollments').document(enrollment['id']).update({
        'completedLessons': completed, 'progress': progress, 'lastWatchedLesson': lecture_id,
    })
    enrollment.update(completedLessons=completed, progress=progress, lastWatchedLesson=lecture_id)
    return LessonCompletion(progress, upcoming, upcoming is None, False)


def resume_lecture(enrollment, lectures):
    """Lecture after the last one watched, else the first lecture not yet completed."""
    if not lectures: return None
    completed = set((enrollment or {}).get('completedLessons') or [])
    last_watched = (enrollment or {}).get('lastWatchedLesson')
    if last_watched and find_lecture(lectures, last_watched):
        return next_lecture(lectures, last_watched) or find_lecture(lectures, last_watched)
    return next((l for l in lectures if l['id'] not in completed), lectures[0])


def student_enrollments(db, student_id):
    query = db.collection('enrollments').where(filter=firestore.FieldFilter('studentId', '==', student_id))
    enrollments, course_cache = stream_dicts(query), {}
    for enrollment in enrollments:
        enrollment['course'] = {'id': enrollment['courseId'], **get_cached(db, 'courses', enrollment['courseId'], course_cache)}
    return sorted(enrollments, key=lambda e: e.get('progress', 0))


def instructor_roster(db, instructor_id):
    """Enrollments in the instructor's courses joined with the student and course."""
    query = db.collection('enrollments').where(filter=firestore.FieldFilter('instructorId', '==', instructor_id))
    enrollments = stream_dicts(query)
    students = fetch_users_by_ids(db, [e.get('studentId') for e in enrollments])
    course_cache = {}
    for enrollment in enrollments:
        enrollment['student'] = students.get(enrollment.get('studentId'), {})
        enrollment['course'] = get_cached(db, 'courses', enrollment['courseId'], course_cache)
    return enrollments
