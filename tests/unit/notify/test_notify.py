import pytest

from chatmirror.errors import AuthError, NetworkError
from chatmirror.models import Message
from chatmirror.network import NetworkMonitor
from chatmirror.notify import (
    AlertPolicy,
    LoggingNotificationSink,
    format_alert,
    resolve_sender_name,
    should_alert,
    truncate_preview,
)


def incoming(chat_id, from_me=False):
    return Message("m", chat_id, 1.0, chat_id, "hi", from_me=from_me)


def test_should_alert_skips_own_and_foreground():
    policy = AlertPolicy()

    assert should_alert(incoming("1@c.us"), None, policy)
    assert not should_alert(incoming("1@c.us", from_me=True), None, policy)
    assert not should_alert(incoming("1@c.us"), "1@c.us", policy)
    assert not should_alert(incoming("status@broadcast"), None, policy)
    assert not should_alert(incoming("1@c.us"), None, AlertPolicy(enabled=False))


def test_sender_name_resolution_order():
    contacts = {"1@c.us": "Ann"}

    assert resolve_sender_name("1@c.us", contacts, "Push") == "Ann"
    assert resolve_sender_name("1:7@c.us", {"1": "Ann"}) == "Ann"
    assert resolve_sender_name("2@c.us", contacts, "Push") == "Push"
    assert resolve_sender_name("2@c.us", contacts) != ""


def test_alert_text():
    assert format_alert("Ann", "x" * 150, False, False)[1] == "x" * 97 + "..."
    assert format_alert("Ann", "", False, False) == ("Ann", "[Media]")
    assert format_alert("Ann", "hi", True, False, "Team") == ("Ann in Team", "hi")
    assert format_alert("Ann", "hi", False, True) == ("Ann posted a status", "New status update")
    assert format_alert("Ann", "secret", False, False, show_previews=False) == ("Ann", "New message")
    assert truncate_preview("short") == "short"


@pytest.mark.asyncio
async def test_logging_sink_logs(caplog):
    caplog.set_level("INFO", logger="chatmirror.notify")

    await LoggingNotificationSink().notify("Ann", "hi", False, False)

    assert "Notification: Ann: hi" in caplog.text


def test_network_monitor_needs_consecutive_network_failures():
    monitor = NetworkMonitor(failure_threshold=2)
    seen = []
    monitor.subscribe(seen.append)

    monitor.mark_failure(NetworkError())
    monitor.mark_failure(AuthError())
    assert monitor.online

    monitor.mark_failure(NetworkError())
    assert not monitor.online

    monitor.mark_online()
    assert monitor.online
    assert monitor.consecutive_failures == 0
    assert seen == [False, True]
