"""Tests for outgoing email."""

import smtplib

import pytest

from mailer import Mailer, send_password_reset_email, send_verification_email


class FakeSMTP:
    """Records the SMTP conversation instead of opening a socket."""

    instances = []

    def __init__(self, host, port):
        self.host = host
        self.port = port
        self.calls = []
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.calls.append("quit")
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user, password))

    def send_message(self, message):
        self.sent.append(message)


class FailingSMTP(FakeSMTP):

    def send_message(self, message):
        raise smtplib.SMTPRecipientsRefused({message["To"]: (550, b"no such user")})


@pytest.fixture
def smtp_settings(settings):
    settings.environment = "production"
    settings.email_server_host = "smtp.mailhost.io"
    settings.email_server_port = 587
    settings.email_server_user = "mailer"
    settings.email_server_password = "s3cret"
    FakeSMTP.instances = []
    return settings


class TestDevelopmentMode:

    def test_placeholder_credentials_log_instead_of_send(self, settings):
        def explode(*args):
            raise AssertionError("SMTP should not be used in development mode")

        mailer = Mailer(settings, smtp_factory=explode)
        assert mailer.dev_mode
        result = mailer.send("jane@example.com", "Hello", "<p>Hi</p>")
        assert result.success
        assert result.message_id.startswith("dev-")

    def test_production_never_uses_dev_mode(self, settings):
        settings.environment = "production"
        assert not Mailer(settings).dev_mode


class TestSmtp:
    """Real sends go through the SMTP factory."""

    def test_sends_multipart_message(self, smtp_settings):
        result = Mailer(smtp_settings, smtp_factory=FakeSMTP).send("jane@example.com", "Hello", "<p>Hi <b>Jane</b></p>")

        assert result.success
        smtp = FakeSMTP.instances[0]
        assert (smtp.host, smtp.port) == ("smtp.mailhost.io", 587)
        assert smtp.calls == ["starttls", ("login", "mailer", "s3cret"), "quit"]
        message = smtp.sent[0]
        assert message["To"] == "jane@example.com"
        assert message["Message-ID"] == result.message_id
        assert message.get_body(("plain",)).get_content().strip() == "Hi Jane"
        assert "<b>Jane</b>" in message.get_body(("html",)).get_content()

    def test_implicit_tls_port_skips_starttls(self, smtp_settings):
        smtp_settings.email_server_port = 465
        Mailer(smtp_settings, smtp_factory=FakeSMTP).send("jane@example.com", "Hello", "<p>Hi</p>")
        assert "starttls" not in FakeSMTP.instances[0].calls

    def test_failure_is_reported_not_raised(self, smtp_settings):
        result = Mailer(smtp_settings, smtp_factory=FailingSMTP).send("jane@example.com", "Hello", "<p>Hi</p>")
        assert not result.success
        assert result.error

    def test_connection_error(self, smtp_settings):
        def refuse(host, port):
            raise ConnectionRefusedError("connection refused")

        result = Mailer(smtp_settings, smtp_factory=refuse).send("jane@example.com", "Hello", "<p>Hi</p>")
        assert not result.success


class TestTemplates:

    def test_verification_link(self, smtp_settings):
        smtp_settings.app_url = "https://portfoliohub.com"
        send_verification_email(Mailer(smtp_settings, smtp_factory=FakeSMTP), "jane@example.com", "tok123")
        message = FakeSMTP.instances[0].sent[0]
        assert message["Subject"] == "Verify Your Email Address"
        assert "https://portfoliohub.com/auth/verify?token=tok123" in message.get_body(("html",)).get_content()

    def test_reset_link(self, smtp_settings):
        send_password_reset_email(Mailer(smtp_settings, smtp_factory=FakeSMTP), "jane@example.com", "tok456")
        message = FakeSMTP.instances[0].sent[0]
        assert f"{smtp_settings.app_url}/auth/reset-password?token=tok456" in message.get_body(("html",)).get_content()
        assert "1 hour" in message.get_body(("plain",)).get_content()
