# roles.py
import logging

from firebase_admin import firestore

logger = logging.getLogger(__name__)

ROLES = ('student', 'instructor', 'admin')


def available_roles(user_data):
    stored_role = (user_data or {}).get('role')
    roles = ['student']
    if stored_role in ('instructor', 'admin'): roles.append('instructor')
    if stored_role == 'admin': roles.append('admin')
    return roles


def resolve_active_role(user_data, last_role=None):
    """Admins land on the admin role; everyone else keeps their last role when they still hold it."""
    roles = available_roles(user_data)
    if (user_data or {}).get('role') == 'admin': return 'admin'
    if last_role and last_role in roles: return last_role
    if 'instructor' in roles: return 'instructor'
    return 'student'


def switch_role(roles, current_role, requested_role):
    if requested_role in roles: return requested_role
    logger.warning('Role switch to "%s" denied. Not an available role.', requested_role)
    return current_role


def build_user_profile(uid, email, user_data):
    if not user_data:
        logger.warning("User document not found in Firestore for UID: %s", uid)
        return {'uid': uid, 'email': email or '', 'fullName': 'New User', 'role': 'student', 'status': 'active',
                'isInstructorApproved': False, 'availableRoles': ['student'], 'profilePictureURL': ''}
    profile = dict(user_data)
    profile.update({'uid': uid, 'email': email or user_data.get('email', ''), 'availableRoles': available_roles(user_data),
                    'status': user_data.get('status') or 'active', 'profilePictureURL': user_data.get('profilePictureURL', '')})
    return profile


def new_user_document(uid, email, full_name, role='student'):
    if role not in ('student', 'instructor'): role = 'student'
    return {
        'uid': uid, 'email': email, 'fullName': full_name or f"user_{uid[:6]}", 'role': role,
        'isInstructorApproved': False, 'status': 'active', 'bio': '', 'profilePictureURL': '',
        'createdAt': firestore.SERVER_TIMESTAMP,
    }
