"""
Support Policy File
===================

Loads support_policy.yaml (tenant defaults, escalation hierarchy, default
alert rules, severity cutoffs) and hot-reloads it on change.
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from supportdesk.alerting.application import IAlertingPolicyProvider
from supportdesk.alerting.domain import AlertingPolicy
from supportdesk.shared.infrastructure.logging import get_logger
from supportdesk.support.application import ISupportPolicyProvider
from supportdesk.support.domain import SupportPolicy

logger = get_logger(__name__)


class PolicyDocument(BaseModel):
    """Top level of the policy file."""
    support: SupportPolicy = Field(default_factory=SupportPolicy)
    alerting: AlertingPolicy = Field(default_factory=AlertingPolicy)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for policy file changes."""

    def __init__(self, manager: "SupportPolicyManager", path: Path):
        self.manager = manager
        self.path = path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.path.resolve():
            logger.info("Policy file changed", extra={"path": str(event.src_path)})
            self.manager.reload()


class SupportPolicyManager(ISupportPolicyProvider, IAlertingPolicyProvider):
    """
    Thread-safe policy holder with hot reload.

    The watchdog observer thread swaps the whole document under a lock; a
    file that fails to parse leaves the previous policy in place.
    """

    def __init__(self):
        self._document: Optional[PolicyDocument] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> PolicyDocument:
        """Initial policy load."""
        self._path = Path(path)
        document = self._load_from_file(self._path)
        with self._lock:
            self._document = document
        return document

    def _load_from_file(self, path: Path) -> PolicyDocument:
        if not path.exists():
            logger.warning("Policy file not found, using defaults", extra={"path": str(path)})
            return PolicyDocument()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return PolicyDocument(**data)

    def reload(self) -> bool:
        """Reload the policy from file."""
        if self._path is None:
            return False

        try:
            document = self._load_from_file(self._path)
        except Exception as e:
            logger.error("Failed to reload policy file", extra={"path": str(self._path), "error": str(e)})
            return False

        with self._lock:
            self._document = document
        logger.info("Policy reloaded", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """
        Watch the policy file for changes.

        A missing file or a platform without file notifications leaves the
        loaded policy static.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Policy file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                PolicyFileHandler(self, self._path),
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Safe to call even if not watching."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def document(self) -> PolicyDocument:
        with self._lock:
            if self._document is None:
                raise RuntimeError("Support policy not loaded")
            return self._document

    def get_support_policy(self) -> SupportPolicy:
        return self.document.support

    def get_alerting_policy(self) -> AlertingPolicy:
        return self.document.alerting
