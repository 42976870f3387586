import pytest

import email_notify


class RecordingSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def sendmail(self, from_addr, to_addrs, message):
        RecordingSMTP.sent.append((from_addr, to_addrs, message))


class RefusingSMTP(RecordingSMTP):
    def __init__(self, host, port, timeout=None):
        raise ConnectionRefusedError("relay down")


@pytest.fixture
def mail(app, monkeypatch):
    RecordingSMTP.sent = []
    app.config.update(EMAIL_ENABLED=True, NOTIFY_EMAIL="crew@rideunited.org",
                      EMAIL_FROM="noreply@rideunited.org")
    monkeypatch.setattr(email_notify.smtplib, "SMTP", RecordingSMTP)
    return RecordingSMTP.sent


def test_disabled_sends_nothing(app, monkeypatch):
    monkeypatch.setattr(email_notify.smtplib, "SMTP", RefusingSMTP)
    assert email_notify.send_email("crew@rideunited.org", "hi", "body") is False


def test_send_email(mail):
    assert email_notify.send_email("crew@rideunited.org", "Hello", "Body text") is True
    from_addr, to_addrs, message = mail[0]
    assert from_addr == "noreply@rideunited.org"
    assert to_addrs == ["crew@rideunited.org"]
    assert "Subject: Hello" in message


def test_route_notice(mail):
    email_notify.notify_route_submitted({
        "routeName": "Sunday Loop", "leaderName": "Rita", "distance": 3.2,
        "duration": 19, "waypoints": [{}, {}, {}], "startTime": "2099-06-01T10:00:00",
    })
    assert "New ride awaiting review: Sunday Loop" in mail[0][2]


def test_relay_failure_is_logged_not_raised(mail, monkeypatch):
    monkeypatch.setattr(email_notify.smtplib, "SMTP", RefusingSMTP)
    assert email_notify.send_email("crew@rideunited.org", "Hello", "Body") is False
