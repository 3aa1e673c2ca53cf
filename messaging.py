# messaging.py
"""One-to-one chats between students, instructors and admins."""
import logging

from firebase_admin import firestore

from datastore import doc_to_dict, fetch_users_by_ids, guarded, stream_dicts

logger = logging.getLogger(__name__)


class ChatError(Exception):
    pass


def get_chat(db, chat_id, user_id):
    doc = db.collection('chats').document(chat_id).get()
    if not doc.exists: raise ChatError("Conversation introuvable.")
    chat = doc_to_dict(doc)
    if user_id not in chat.get('participants', []): raise ChatError("Vous ne participez pas à cette conversation.")
    return chat


def other_participant(chat, user_id):
    return next((p for p in chat.get('participants', []) if p != user_id), None)


@guarded('chats', 'create')
def start_chat(db, user_id, other_id):
    if not other_id or other_id == user_id: raise ChatError("Impossible de démarrer une conversation avec vous-même.")
    participants = sorted([user_id, other_id])
    existing = next(db.collection('chats').where(filter=firestore.FieldFilter('participants', '==', participants)).limit(1).stream(), None)
    if existing: return existing.id
    chat_ref = db.collection('chats').document()
    chat_ref.set({
        'participants': participants, 'createdAt': firestore.SERVER_TIMESTAMP, 'updatedAt': firestore.SERVER_TIMESTAMP,
        'lastMessage': 'Conversation initiée.', 'unreadBy': [],
    })
    return chat_ref.id


def list_chats(db, user_id):
    query = db.collection('chats').where(filter=firestore.FieldFilter('participants', 'array_contains', user_id)).order_by('updatedAt', direction=firestore.Query.DESCENDING)
    chats = stream_dicts(query)
    profiles = fetch_users_by_ids(db, [other_participant(c, user_id) for c in chats])
    for chat in chats:
        chat['other'] = profiles.get(other_participant(chat, user_id), {})
        chat['unread'] = user_id in (chat.get('unreadBy') or [])
    return chats


def chat_messages(db, chat_id):
    return stream_dicts(db.collection('chats').document(chat_id).collection('messages').order_by('createdAt'))


@guarded('chats', 'write')
def send_message(db, chat, sender_id, text):
    text = (text or '').strip()
    if not text: raise ChatError("Le message ne peut pas être vide.")
    recipient = other_participant(chat, sender_id)
    chat_ref = db.collection('chats').document(chat['id'])
    message_ref = chat_ref.collection('messages').document()
    batch = db.batch()
    batch.set(message_ref, {'text': text, 'senderId': sender_id, 'createdAt': firestore.SERVER_TIMESTAMP, 'status': 'sent'})
    batch.update(chat_ref, {'lastMessage': text, 'updatedAt': firestore.SERVER_TIMESTAMP, 'lastSenderId': sender_id, 'unreadBy': [recipient] if recipient else []})
    batch.commit()
    return message_ref.id


def mark_as_read(db, chat, reader_id):
    """Marks the other participant's messages as read; returns how many changed."""
    chat_ref = db.collection('chats').document(chat['id'])
    batch, changed = db.batch(), 0
    for doc in chat_ref.collection('messages').where(filter=firestore.FieldFilter('senderId', '!=', reader_id)).stream():
        if doc.to_dict().get('status') != 'read':
            batch.update(doc.reference, {'status': 'read'}); changed += 1
    if reader_id in (chat.get('unreadBy') or []):
        batch.update(chat_ref, {'unreadBy': [uid for uid in chat['unreadBy'] if uid != reader_id]}); changed += 1
    if changed: batch.commit()
    return changed


def chat_partners(db, user_id, role):
    """People the user may start a chat with: instructors see their students, students their instructors."""
    if role == 'instructor':
        field, other_field = 'instructorId', 'studentId'
    else:
        field, other_field = 'studentId', 'instructorId'
    enrollments = stream_dicts(db.collection('enrollments').where(filter=firestore.FieldFilter(field, '==', user_id)))
    partners = fetch_users_by_ids(db, [e.get(other_field) for e in enrollments])
    return sorted(({'uid': uid, **data} for uid, data in partners.items() if uid != user_id), key=lambda u: u.get('fullName', ''))
