from __future__ import annotations

from fleetsync._redact import redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "data": {
            "users": [
                {"id": "USR-001", "password": "driver123", "email": "d@example.com", "Phone": "+31"},
            ]
        },
        "Authorization": "Bearer abc",
        "updateType": "partial",
    }

    redacted = redact_for_log(payload)
    user = redacted["data"]["users"][0]
    assert user["id"] == "USR-001"
    assert user["password"] == "<redacted>"
    assert user["email"] == "<redacted>"
    assert user["Phone"] == "<redacted>"
    assert redacted["Authorization"] == "<redacted>"
    assert redacted["updateType"] == "partial"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_caps_long_lists() -> None:
    redacted = redact_for_log(list(range(25)))

    assert redacted[:20] == list(range(20))
    assert redacted[-1] == "<+5 more>"
