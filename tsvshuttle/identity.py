# tsvshuttle/identity.py
"""
Azure sign-in for blob storage access.

Storage calls authenticate with the Azure CLI session (``az login``). When
there is no session, a device-code login is started and the session is
polled with backoff until it appears, the timeout passes or the wait is
cancelled.
"""

import logging
import subprocess
import threading
import time
from typing import Callable, Optional

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import AzureCliCredential

from .defaults import settings
from .results import ErrorKind, StepResult

logger = logging.getLogger(__name__)


def wait_for(predicate: Callable[[], bool],
             timeout: float,
             interval: float = 5,
             max_interval: float = 30,
             backoff: float = 1.5,
             cancel_event: Optional[threading.Event] = None,
             clock: Callable[[], float] = time.monotonic) -> bool:
    """
    Poll ``predicate`` until it returns True.

    The pause between polls starts at ``interval`` and grows by ``backoff``
    up to ``max_interval``. Returns False when ``timeout`` seconds pass or
    ``cancel_event`` is set.
    """
    cancel_event = cancel_event or threading.Event()
    deadline = clock() + timeout
    pause = interval
    while True:
        if predicate():
            return True
        remaining = deadline - clock()
        if remaining <= 0 or cancel_event.is_set():
            return False
        if cancel_event.wait(min(pause, remaining)):
            return False
        pause = min(pause * backoff, max_interval)


class AzureIdentity:
    """Check for, and if needed establish, an Azure CLI login."""

    def __init__(self, credential=None, scope: Optional[str] = None, az_path: Optional[str] = None,
                 login_settings: Optional[dict] = None):
        self.credential = credential or AzureCliCredential()
        self.scope = scope or settings['storage_scope']
        self.az_path = az_path or settings.get('az_path', 'az')
        self.login_settings = dict(settings['login'])
        self.login_settings.update(login_settings or {})

    def has_session(self) -> bool:
        try:
            self.credential.get_token(self.scope)
        except ClientAuthenticationError as e:
            logger.debug(f"No Azure session: {e}")
            return False
        return True

    def start_login(self) -> subprocess.Popen:
        """Start ``az login --use-device-code``; its instructions go to the console."""
        return subprocess.Popen([self.az_path, 'login', '--use-device-code', '--output', 'none'])

    def ensure_session(self, cancel_event: Optional[threading.Event] = None) -> StepResult:
        if self.has_session():
            return StepResult.success(message="Authentication successful")

        logger.info("No active Azure session, starting device code login")
        try:
            proc = self.start_login()
        except OSError as e:
            return StepResult.failure(ErrorKind.TOOL, f"Could not run {self.az_path} login", detail=str(e))

        timeout = self.login_settings['timeout']
        try:
            ready = wait_for(
                self.has_session,
                timeout=timeout,
                interval=self.login_settings['initial_interval'],
                max_interval=self.login_settings['max_interval'],
                backoff=self.login_settings['backoff'],
                cancel_event=cancel_event,
            )
        finally:
            if proc.poll() is None:
                proc.terminate()

        if not ready:
            if cancel_event is not None and cancel_event.is_set():
                return StepResult.failure(ErrorKind.AUTH, "Azure login was cancelled")
            return StepResult.failure(ErrorKind.AUTH, f"Timed out waiting for Azure login after {timeout}s")
        return StepResult.success(message="Authentication successful")
