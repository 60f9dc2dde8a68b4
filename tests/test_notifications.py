"""Tests for app/services/notifications.py: inbox storage and outbound channels.

Run with:  pytest tests/test_notifications.py -v
"""
from datetime import timedelta
from types import SimpleNamespace

import requests
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from app.core.config import settings as core_settings
from app.models.notification import Notification
from app.services import notifications
from app.utils.timeutils import utcnow
from tests.factories import add_user


class _Recorder:
    def __init__(self, status_code=200, exc=None):
        self.calls = []
        self.status_code = status_code
        self.exc = exc

    def __call__(self, url, **kwargs):
        self.calls.append(SimpleNamespace(url=url, **kwargs))
        if self.exc:
            raise self.exc
        return SimpleNamespace(status_code=self.status_code)


def _telegram_on(monkeypatch, recorder):
    monkeypatch.setattr(core_settings, "TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setattr(core_settings, "TELEGRAM_CHAT_ID", "-100")
    monkeypatch.setattr(notifications.requests, "post", recorder)


def test_send_stores_notification(db):
    user = add_user(db)
    assert notifications.send(db, user.id, "Olá", "Bem-vindo", metadata={"k": 1}) is True

    row = db.query(Notification).one()
    assert (row.user_id, row.title, row.type, row.priority) == (user.id, "Olá", "system", "medium")
    assert row.is_read is False
    assert row.notification_metadata == {"k": 1}


def test_high_priority_goes_to_telegram(db, monkeypatch):
    recorder = _Recorder()
    _telegram_on(monkeypatch, recorder)
    user = add_user(db)

    notifications.send(db, user.id, "Urgente", "Carga parada", priority="high")
    notifications.send(db, user.id, "Normal", "Nada demais")

    assert len(recorder.calls) == 1
    call = recorder.calls[0]
    assert call.url == "https://api.telegram.org/bot123:abc/sendMessage"
    assert call.json["chat_id"] == "-100"
    assert call.json["parse_mode"] == "HTML"
    assert "Urgente" in call.json["text"]
    assert call.timeout == 5


def test_match_type_goes_to_telegram(db, monkeypatch):
    recorder = _Recorder()
    _telegram_on(monkeypatch, recorder)
    user = add_user(db)
    notifications.send(db, user.id, "Carga compatível!", "Nova carga", type="match")
    assert len(recorder.calls) == 1


def test_channel_failures_do_not_change_result(db, monkeypatch):
    _telegram_on(monkeypatch, _Recorder(exc=requests.ConnectionError("down")))
    user = add_user(db)
    assert notifications.send(db, user.id, "Urgente", "x", priority="high") is True
    assert db.query(Notification).count() == 1

    _telegram_on(monkeypatch, _Recorder(status_code=502))
    assert notifications.send_telegram_alert("oi") is False


def test_telegram_skipped_without_credentials(monkeypatch):
    recorder = _Recorder()
    monkeypatch.setattr(notifications.requests, "post", recorder)
    assert notifications.send_telegram_alert("oi") is False
    assert recorder.calls == []


def test_push_uses_stored_token(db, monkeypatch):
    recorder = _Recorder()
    monkeypatch.setattr(notifications.requests, "post", recorder)
    monkeypatch.setattr(core_settings, "PUSH_API_URL", "https://push.example.com/send")
    monkeypatch.setattr(core_settings, "PUSH_API_KEY", "segredo")
    with_token = add_user(db, push_token="tok-1")
    without = add_user(db)

    assert notifications.send_push(db, with_token.id, "Oi", "Mensagem", "/painel") is True
    assert notifications.send_push(db, without.id, "Oi", "Mensagem") is False

    assert len(recorder.calls) == 1
    call = recorder.calls[0]
    assert call.json == {"token": "tok-1", "title": "Oi", "message": "Mensagem", "url": "/painel"}
    assert call.headers["Authorization"] == "Bearer segredo"


def test_send_returns_false_when_insert_fails(db, monkeypatch):
    user = add_user(db)

    def broken_commit():
        raise OperationalError("INSERT", {}, Exception("disk full"))

    monkeypatch.setattr(db, "commit", broken_commit)
    assert notifications.send(db, user.id, "Olá", "x") is False


def test_inbox_read_flow(db):
    user = add_user(db)
    other = add_user(db)
    for index in range(3):
        notifications.send(db, user.id, f"Aviso {index}", "x")
    notifications.send(db, other.id, "Alheio", "x")

    inbox = notifications.list_notifications(db, user.id)
    assert [item["title"] for item in inbox] == ["Aviso 2", "Aviso 1", "Aviso 0"]
    assert notifications.unread_count(db, user.id) == 3

    foreign_id = db.query(Notification).filter(Notification.user_id == other.id).one().id
    assert notifications.mark_read(db, foreign_id, user.id) is False
    assert notifications.mark_read(db, inbox[0]["id"], user.id) is True
    assert notifications.unread_count(db, user.id) == 2
    assert [item["title"] for item in notifications.list_notifications(db, user.id, unread_only=True)] == [
        "Aviso 1",
        "Aviso 0",
    ]

    assert notifications.mark_all_read(db, user.id) == 2
    assert notifications.unread_count(db, user.id) == 0
    assert notifications.unread_count(db, other.id) == 1


def test_clean_old_only_removes_old_read_rows(db):
    user = add_user(db)
    old = utcnow() - timedelta(days=45)
    for title, is_read, created in (("velha lida", True, old), ("velha nova", False, old), ("recente", True, utcnow())):
        db.add(Notification(user_id=user.id, title=title, message="x", is_read=is_read, created_at=created))
    db.commit()

    assert notifications.clean_old(db, 30) == 1
    titles = {row[0] for row in db.execute(text("SELECT title FROM notifications"))}
    assert titles == {"velha nova", "recente"}
