import resend

from storefront.mailer import Mailer


class TestMailer:
    def test_api_key_is_configured_once(self, monkeypatch):
        monkeypatch.setattr(resend, "api_key", None)
        sent = []

        def fake_send(payload):
            sent.append((payload, resend.api_key))
            return {"id": "email-1"}

        monkeypatch.setattr(resend.Emails, "send", fake_send)
        mailer = Mailer("re_test_key", "Storefront <no-reply@example.com>")
        assert resend.api_key == "re_test_key"

        assert mailer.send_password_reset_code("jane@example.com", "123456", 15) == (True, None)
        assert mailer.send_password_reset_code("omar@example.com", "654321", 15) == (True, None)
        assert [api_key for _, api_key in sent] == ["re_test_key", "re_test_key"]
        assert resend.api_key == "re_test_key"
        assert "123456" in sent[0][0]["text"]

    def test_missing_key_reports_failure(self, monkeypatch):
        monkeypatch.setattr(resend, "api_key", None)
        mailer = Mailer("", "Storefront <no-reply@example.com>")
        ok, error = mailer.send_password_reset_code("jane@example.com", "123456", 15)
        assert ok is False
        assert "not configured" in error
        assert resend.api_key is None

    def test_provider_error(self, monkeypatch):
        monkeypatch.setattr(resend, "api_key", None)

        def failing_send(payload):
            raise RuntimeError("rate limited")

        monkeypatch.setattr(resend.Emails, "send", failing_send)
        mailer = Mailer("re_test_key", "Storefront <no-reply@example.com>")
        assert mailer.send_password_reset_code("jane@example.com", "1", 15) == (False, "rate limited")
