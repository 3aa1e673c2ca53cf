# support.py
"""Support tickets, their message threads and the refund procedure."""
import datetime
import logging

from firebase_admin import firestore

from datastore import doc_to_dict, fetch_users_by_ids, guarded, stream_dicts
from learning import enrollment_id

logger = logging.getLogger(__name__)

TICKET_CATEGORIES = ('Technique', 'Paiement', 'Remboursement', 'Contenu', 'Autre')
REFUNDED_STATUS = 'Remboursé'


class SupportError(Exception):
    pass


class RefundError(SupportError):
    pass


def get_ticket(db, ticket_id):
    doc = db.collection('support_tickets').document(ticket_id).get()
    return doc_to_dict(doc) if doc.exists else None


@guarded('support_tickets', 'create')
def open_ticket(db, user_id, subject, message, course_id=None, category='Autre'):
    subject, message = (subject or '').strip(), (message or '').strip()
    if not subject or not message: raise SupportError("Le sujet et le message sont requis.")
    ticket_ref = db.collection('support_tickets').document()
    batch = db.batch()
    batch.set(ticket_ref, {
        'userId': user_id, 'subject': subject, 'courseId': course_id or None, 'category': category if category in TICKET_CATEGORIES else 'Autre',
        'status': 'open', 'lastMessage': message, 'createdAt': firestore.SERVER_TIMESTAMP, 'updatedAt': firestore.SERVER_TIMESTAMP,
    })
    batch.set(ticket_ref.collection('messages').document(), {'senderId': user_id, 'text': message, 'createdAt': firestore.SERVER_TIMESTAMP})
    batch.commit()
    return ticket_ref.id


def add_message(db, ticket_id, sender_id, text, reopen=True):
    text = (text or '').strip()
    if not text: raise SupportError("Le message ne peut pas être vide.")
    ticket_ref = db.collection('support_tickets').document(ticket_id)
    ticket_ref.collection('messages').add({'senderId': sender_id, 'text': text, 'createdAt': firestore.SERVER_TIMESTAMP})
    update = {'lastMessage': text, 'updatedAt': firestore.SERVER_TIMESTAMP}
    if reopen: update['status'] = 'open'
    ticket_ref.update(update)


def ticket_messages(db, ticket_id):
    query = db.collection('support_tickets').document(ticket_id).collection('messages').order_by('createdAt')
    return stream_dicts(query)


def user_tickets(db, user_id):
    query = db.collection('support_tickets').where(filter=firestore.FieldFilter('userId', '==', user_id))
    min_date = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)
    return sorted(stream_dicts(query), key=lambda t: t.get('updatedAt') or min_date, reverse=True)


def all_tickets(db):
    tickets = stream_dicts(db.collection('support_tickets').order_by('updatedAt', direction=firestore.Query.DESCENDING))
    users = fetch_users_by_ids(db, [t.get('userId') for t in tickets])
    for ticket in tickets: ticket['user'] = users.get(ticket.get('userId'), {})
    return tickets, sum(1 for t in tickets if t.get('status') == 'open')


def close_ticket(db, ticket_id):
    db.collection('support_tickets').document(ticket_id).update({'status': 'closed', 'updatedAt': firestore.SERVER_TIMESTAMP})


def _payment_date(doc):
    return doc.to_dict().get('date') or datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


@guarded('payments', 'refund')
def refund_ticket(db, ticket):
    """
    Refunds the course named by the ticket in one batch:
    payment -> Remboursé, enrollment deleted, ticket closed.

    When several completed payments match, the most recent one is refunded.
    """
    if not ticket.get('courseId'): raise RefundError("Ce ticket n'est lié à aucun cours.")
    query = (db.collection('payments').where(filter=firestore.FieldFilter('userId', '==', ticket['userId']))
             .where(filter=firestore.FieldFilter('courseId', '==', ticket['courseId']))
             .where(filter=firestore.FieldFilter('status', '==', 'Completed')))
    matches = list(query.stream())
    if not matches: raise RefundError("Aucun paiement correspondant trouvé pour ce cours.")
    if len(matches) > 1:
        logger.warning("Ticket %s matches %d completed payments; refunding the most recent", ticket['id'], len(matches))
    payment_doc = max(matches, key=_payment_date)
    batch = db.batch()
    batch.update(payment_doc.reference, {'status': REFUNDED_STATUS, 'refundedAt': firestore.SERVER_TIMESTAMP})
    batch.delete(db.collection('enrollments').document(enrollment_id(ticket['userId'], ticket['courseId'])))
    batch.update(db.collection('support_tickets').document(ticket['id']), {'status': 'closed', 'updatedAt': firestore.SERVER_TIMESTAMP})
    batch.commit()
    logger.info("Refunded payment %s for ticket %s", payment_doc.id, ticket['id'])
    return payment_doc.id
