# platform_settings.py
"""Global platform configuration stored in settings/global_config and settings/global."""
import copy
import logging

from firebase_admin import firestore

logger = logging.getLogger(__name__)

DEFAULT_TERMS = """
**1. Objet**
Les présentes conditions générales régissent l'utilisation de la plateforme FormaAfrique par les étudiants et les instructeurs.

**2. Inscription**
L'accès aux formations payantes est accordé après confirmation du paiement. Les formations gratuites sont accessibles dès l'inscription.

**3. Instructeurs**
L'Instructeur autorise FormaAfrique à prélever automatiquement une commission sur le prix de vente de chaque cours vendu. Le taux de cette commission est défini dans les paramètres de la plateforme et peut être sujet à modification.

**4. Remboursements**
Toute demande de remboursement passe par le support. Un remboursement accordé révoque l'accès au cours concerné.
"""

DEFAULT_PRIVACY = """
**1. Données collectées**
Nom, adresse e-mail, progression dans les cours et historique des paiements.

**2. Partage**
Vos données peuvent être partagées uniquement avec les instructeurs (votre nom et votre progression dans leurs cours) et nos prestataires techniques.

**3. Vos droits**
Vous disposez d'un droit d'accès, de rectification et de suppression de vos données. Contactez-nous à notre adresse e-mail officielle.
"""

DEFAULT_SETTINGS = {
    'general': {'siteName': 'FormaAfrique', 'siteDescription': '', 'contactEmail': '', 'logoUrl': ''},
    'commercial': {'commissionRate': 30, 'minimumPayout': 5000, 'enableMobileMoney': True},
    'platform': {'maintenanceMode': False, 'allowInstructorSignup': True, 'announcementMessage': ''},
    'legal': {'termsOfService': DEFAULT_TERMS.strip(), 'privacyPolicy': DEFAULT_PRIVACY.strip()},
}


class SettingsError(ValueError):
    pass


def _merge(base, override):
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict): merged[key] = _merge(merged[key], value)
        else: merged[key] = value
    return merged


def load_settings(db):
    doc = db.collection('settings').document('global_config').get()
    return _merge(DEFAULT_SETTINGS, doc.to_dict() if doc.exists else {})


def save_settings(db, data):
    rate = data.get('commercial', {}).get('commissionRate')
    if rate is not None and not 0 <= float(rate) <= 100:
        raise SettingsError("Le taux doit être entre 0 et 100.")
    minimum = data.get('commercial', {}).get('minimumPayout')
    if minimum is not None and float(minimum) < 0:
        raise SettingsError("Le seuil de retrait ne peut pas être négatif.")
    db.collection('settings').document('global_config').set(data, merge=True)
    logger.info("Global settings updated: %s", ', '.join(sorted(data)))


def commission_rate(settings):
    return float(settings['commercial']['commissionRate']) / 100


def minimum_payout(settings):
    return float(settings['commercial']['minimumPayout'])


def announcement(db):
    doc = db.collection('settings').document('global').get()
    return ((doc.to_dict() or {}).get('platform') or {}).get('announcementMessage', '') if doc.exists else ''


def save_announcement(db, text):
    db.collection('settings').document('global').set({'platform': {'announcementMessage': text}}, merge=True)
    db.collection('announcements').add({'text': text, 'createdAt': firestore.SERVER_TIMESTAMP})


def announcement_history(db, limit=20):
    query = db.collection('announcements').order_by('createdAt', direction=firestore.Query.DESCENDING).limit(limit)
    return [{'id': doc.id, **doc.to_dict()} for doc in query.stream()]
