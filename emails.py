# emails.py
"""
Enrollment notifications.

Delivery is a placeholder: messages are rendered from templates/emails/ and
logged instead of handed to a mail provider.
"""
import datetime
import logging
import os

from flask import render_template

logger = logging.getLogger(__name__)

SITE_URL = os.environ.get('SITE_URL', 'https://formaafrique-app.web.app')


def send_email(to, subject, html):
    logger.info("Sending email to=%s subject=%s (%d bytes)", to, subject, len(html))
    return {'success': True}


def send_enrollment_emails(student, course, instructor):
    if not student.get('email') or not (instructor or {}).get('email'):
        logger.error("Missing email for student or instructor (course %s).", course.get('id'))
        return False
    year = datetime.date.today().year
    student_html = render_template('emails/student_enrollment.html', student_name=student.get('fullName', ''), course=course,
                                   course_url=f"{SITE_URL}/courses/{course['id']}", year=year)
    send_email(student['email'], f"Bienvenue à la formation : {course.get('title')}", student_html)
    instructor_html = render_template('emails/instructor_enrollment.html', instructor_name=instructor.get('fullName', ''),
                                      student_name=student.get('fullName', ''), course=course, year=year)
    send_email(instructor['email'], f"Nouvel étudiant inscrit à votre cours : {course.get('title')}", instructor_html)
    return True
