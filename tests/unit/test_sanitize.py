"""Tests for utils/sanitize.py."""

from __future__ import annotations

import os
from unittest.mock import patch

from infrashield.utils.sanitize import sanitize_error


class TestSanitizeError:
    def test_stripe_keys(self):
        msg = "auth failed for sk_live_51Habc123 and whsec_abcdef123"
        result = sanitize_error(msg)
        assert "sk_live_51Habc123" not in result
        assert "whsec_abcdef123" not in result
        assert result.count("[REDACTED_KEY]") == 2

    def test_resend_key(self):
        result = sanitize_error("bad key re_0123456789abcdefXYZ")
        assert "re_0123456789abcdefXYZ" not in result

    def test_bearer_and_authorization(self):
        assert sanitize_error("Bearer abc.def") == "Bearer [REDACTED]"
        assert "secret" not in sanitize_error("authorization: secret")

    def test_explicit_secret(self):
        assert sanitize_error("value=hunter2!", secrets=("hunter2!",)) == "value=[REDACTED]"

    def test_home_path(self):
        with patch.dict(os.environ, {"HOME": "/home/alice", "USERPROFILE": ""}):
            assert sanitize_error("open /home/alice/x.yaml") == "open [USER_HOME]/x.yaml"

    def test_plain_message_untouched(self):
        assert sanitize_error("Toolkit not found: 3") == "Toolkit not found: 3"

    def test_empty(self):
        assert sanitize_error("") == ""
