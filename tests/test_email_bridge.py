"""Notification to mail bridge."""

import pytest

from teleconsult.email_bridge import build_html, build_subject, build_text, on_notification_created


@pytest.fixture
def professional(store):
    store.set("professionals", "pro-1", {"name": "Dr Diop", "email": "diop@example.sn"})


def notification(**fields):
    n = {
        "userId": "pro-1",
        "userType": "professional",
        "type": "appointment_confirmed",
        "title": "RDV confirmé",
        "message": "Votre RDV est confirmé.",
        "data": {"date": "2025-09-21", "time": "20:00", "redirectPath": "/professional/dashboard"},
    }
    n.update(fields)
    return n


def test_professional_notification_is_mailed(store, professional):
    store.set("notifications", "n1", notification())

    assert on_notification_created("n1", store.get("notifications", "n1")) == "n1"

    mail = store.get("mail", "n1")
    assert mail["to"] == "diop@example.sn"
    assert mail["toName"] == "Dr Diop"
    assert mail["headers"]["X-Notification-ID"] == "n1"
    assert mail["message"]["subject"] == "Rendez-vous confirmé le 2025-09-21 à 20:00"
    assert "https://health-e.sn/professional/dashboard" in mail["message"]["html"]

    n = store.get("notifications", "n1")
    assert n["emailed"] is True
    assert n["mailDocId"] == "n1"


def test_already_emailed_is_ignored(store, professional):
    assert on_notification_created("n1", notification(emailed=True)) is None
    assert store.get("mail", "n1") is None


def test_wired_store_mails_once(wired_store, professional):
    wired_store.set("notifications", "n1", notification())
    wired_store.set("notifications", "n1", {"read": True}, merge=True)
    assert len(wired_store.find("mail")) == 1


@pytest.mark.parametrize("fields", [
    {"userType": "patient"},
    {"userId": None},
    {"status": "deleted"},
])
def test_out_of_scope_notifications(store, professional, fields):
    assert on_notification_created("n1", notification(**fields)) is None
    assert store.find("mail") == []


def test_opted_out_professional(store):
    store.set("professionals", "pro-1", {
        "email": "diop@example.sn",
        "settings": {"notifications": {"email": {"enabled": False}}},
    })
    store.set("notifications", "n1", notification())
    on_notification_created("n1", store.get("notifications", "n1"))
    n = store.get("notifications", "n1")
    assert n["emailed"] is False
    assert n["emailSkipped"] == "opted_out"


def test_missing_email(store):
    store.set("professionals", "pro-1", {"name": "Dr Diop"})
    store.set("notifications", "n1", notification())
    on_notification_created("n1", store.get("notifications", "n1"))
    assert store.get("notifications", "n1")["emailSkipped"] == "missing_email"


def test_admin_recipient_from_users(store):
    store.set("users", "adm-1", {"email": "admin@example.sn"})
    store.set("notifications", "n1", notification(userId="adm-1", userType="admin", type="withdrawal_request", title=""))
    on_notification_created("n1", store.get("notifications", "n1"))
    mail = store.get("mail", "n1")
    assert mail["toName"] == "Administrateur Health-e"
    assert mail["message"]["subject"] == "Demande de retrait"


def test_missing_profile_skips(store):
    assert on_notification_created("n1", notification()) is None


class TestTemplates:
    def test_message_from_admin(self):
        n = {"type": "message", "message": "Bonjour", "data": {"fromType": "admin"}}
        assert build_subject(n) == "Message de l'administration Health-e"
        assert build_text(n) == "Message de l'administration Health-e\n\nBonjour"

    def test_message_from_patient(self):
        n = {"type": "message", "data": {"fromName": "Awa"}}
        assert build_subject(n) == "Nouveau message de Awa"

    def test_default_subject(self):
        assert build_subject({"type": "unknown"}) == "Notification Health-e"

    def test_html_is_escaped_and_cta_optional(self):
        html = build_html({"title": "<b>Titre</b>", "message": 'a & "b"'})
        assert "&lt;b&gt;Titre&lt;/b&gt;" in html
        assert "a &amp; &quot;b&quot;" in html
        assert "Ouvrir" not in html
