# tests/test_identity.py
import threading
from unittest.mock import Mock, patch

from azure.core.exceptions import ClientAuthenticationError

from tsvshuttle.identity import AzureIdentity, wait_for
from tsvshuttle.results import ErrorKind


class FakeClock:
    """Clock advanced by waits on a FakeEvent."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FakeEvent:
    """Event whose wait() advances a FakeClock instead of sleeping."""

    def __init__(self, clock, set_after=None):
        self.clock = clock
        self.waits = []
        self._set = False
        self.set_after = set_after

    def is_set(self):
        return self._set

    def wait(self, timeout):
        self.waits.append(timeout)
        self.clock.now += timeout
        if self.set_after is not None and len(self.waits) >= self.set_after:
            self._set = True
        return self._set


class TestWaitFor:

    def test_immediate_success(self):
        clock = FakeClock()
        event = FakeEvent(clock)
        assert wait_for(lambda: True, timeout=10, cancel_event=event, clock=clock)
        assert event.waits == []

    def test_backoff_capped(self):
        clock = FakeClock()
        event = FakeEvent(clock)
        answers = iter([False] * 5 + [True])

        assert wait_for(lambda: next(answers), timeout=300, interval=5, max_interval=12, backoff=2,
                        cancel_event=event, clock=clock)
        assert event.waits == [5, 10, 12, 12, 12]

    def test_timeout(self):
        clock = FakeClock()
        event = FakeEvent(clock)

        assert not wait_for(lambda: False, timeout=20, interval=5, max_interval=30, backoff=2,
                            cancel_event=event, clock=clock)
        # the last wait is trimmed to the deadline
        assert event.waits == [5, 10, 5]
        assert clock.now == 20

    def test_cancel(self):
        clock = FakeClock()
        event = FakeEvent(clock, set_after=2)

        assert not wait_for(lambda: False, timeout=300, cancel_event=event, clock=clock)
        assert len(event.waits) == 2

    def test_real_event_already_set(self):
        event = threading.Event()
        event.set()
        assert not wait_for(lambda: False, timeout=300, cancel_event=event)


class TestAzureIdentity:

    def test_has_session(self):
        credential = Mock()
        identity = AzureIdentity(credential=credential)
        assert identity.has_session()
        credential.get_token.assert_called_once_with('https://storage.azure.com/.default')

    def test_no_session(self):
        credential = Mock()
        credential.get_token.side_effect = ClientAuthenticationError('Please run az login')
        assert not AzureIdentity(credential=credential).has_session()

    def test_existing_session_skips_login(self):
        identity = AzureIdentity(credential=Mock())
        with patch('tsvshuttle.identity.subprocess.Popen') as popen:
            result = identity.ensure_session()
        assert result
        popen.assert_not_called()

    def test_device_code_login(self):
        credential = Mock()
        credential.get_token.side_effect = [ClientAuthenticationError('no session'), ClientAuthenticationError('no'),
                                            Mock()]
        identity = AzureIdentity(credential=credential, login_settings={'initial_interval': 0.01})
        with patch('tsvshuttle.identity.subprocess.Popen') as popen:
            popen.return_value.poll.return_value = 0
            result = identity.ensure_session()

        assert result
        assert popen.call_args[0][0][:3] == ['az', 'login', '--use-device-code']

    def test_login_timeout_terminates_az(self):
        credential = Mock()
        credential.get_token.side_effect = ClientAuthenticationError('no session')
        identity = AzureIdentity(credential=credential, login_settings={'timeout': 0})
        with patch('tsvshuttle.identity.subprocess.Popen') as popen:
            popen.return_value.poll.return_value = None
            result = identity.ensure_session()

        assert not result
        assert result.kind == ErrorKind.AUTH
        assert 'Timed out' in result.message
        popen.return_value.terminate.assert_called_once()

    def test_login_cancelled(self):
        credential = Mock()
        credential.get_token.side_effect = ClientAuthenticationError('no session')
        cancel = threading.Event()
        cancel.set()
        identity = AzureIdentity(credential=credential)
        with patch('tsvshuttle.identity.subprocess.Popen'):
            result = identity.ensure_session(cancel)
        assert result.kind == ErrorKind.AUTH
        assert 'cancelled' in result.message

    def test_az_missing(self):
        credential = Mock()
        credential.get_token.side_effect = ClientAuthenticationError('no session')
        identity = AzureIdentity(credential=credential)
        with patch('tsvshuttle.identity.subprocess.Popen', side_effect=FileNotFoundError('az')):
            result = identity.ensure_session()
        assert result.kind == ErrorKind.TOOL
