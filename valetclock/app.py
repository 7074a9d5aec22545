"""Application wiring: settings -> stores -> authorization core -> services"""

from pathlib import Path
from typing import Optional

from .auth.role_resolver import RoleResolver
from .auth.session_controller import SessionController
from .services.admin_service import AdminService
from .services.clock_service import ClockService
from .services.report_service import ReportService
from .stores.credential_store import CredentialStore, LocalCredentialStore
from .stores.document_store import DocumentStore, InMemoryDocumentStore, JsonDocumentStore
from .stores.firebase_credentials import FirebaseCredentialStore
from .utils.config import ConfigManager, Settings
from .utils.logger import get_logger, setup_logger

logger = get_logger(__name__)


class ValetClockApp:
    """Owns the long-lived components for one process"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[DocumentStore] = None,
        credentials: Optional[CredentialStore] = None,
    ):
        self.settings = settings
        self.store = store
        self.credentials = credentials
        self.resolver: Optional[RoleResolver] = None
        self.controller: Optional[SessionController] = None
        self.admin_service: Optional[AdminService] = None
        self.clock_service: Optional[ClockService] = None
        self.report_service: Optional[ReportService] = None

    def _build_store(self) -> DocumentStore:
        cfg = self.settings.store
        if cfg.backend == "memory":
            return InMemoryDocumentStore()
        return JsonDocumentStore(Path(cfg.data_dir))

    def _build_credentials(self) -> CredentialStore:
        cfg = self.settings.credentials
        if cfg.provider == "firebase":
            return FirebaseCredentialStore(cfg.firebase_api_key, timeout=cfg.request_timeout_seconds)
        path = None
        if self.settings.store.backend == "json":
            path = Path(self.settings.store.data_dir) / "credentials.json"
        return LocalCredentialStore(
            path=path,
            min_password_length=cfg.min_password_length,
            max_failed_attempts=cfg.max_failed_attempts,
            lockout_seconds=cfg.lockout_seconds,
        )

    def initialize(self) -> "ValetClockApp":
        """Load settings (unless injected), configure logging and build components"""
        if self.settings is None:
            self.settings = ConfigManager().load_settings()
            log_cfg = self.settings.logging
            setup_logger(
                log_level=log_cfg.level,
                log_format=log_cfg.format,
                file_path=log_cfg.file_path,
                max_bytes=log_cfg.max_bytes,
                backup_count=log_cfg.backup_count,
            )

        if self.store is None:
            self.store = self._build_store()
        if self.credentials is None:
            self.credentials = self._build_credentials()

        self.resolver = RoleResolver(self.store)
        self.controller = SessionController(
            self.credentials,
            self.store,
            resolver=self.resolver,
            poll_interval=self.settings.auth.status_poll_interval_seconds,
            session_expiry_hours=self.settings.auth.session_expiry_hours,
            ended_session_ttl_seconds=self.settings.auth.ended_session_ttl_seconds,
        )
        self.admin_service = AdminService(self.store, self.credentials)
        self.clock_service = ClockService(self.store)
        self.report_service = ReportService(self.store)

        logger.info(
            "Valet Clock initialized",
            environment=self.settings.app.environment,
            store_backend=self.settings.store.backend,
            credential_provider=self.settings.credentials.provider,
        )
        return self

    async def shutdown(self) -> None:
        if self.controller is not None:
            await self.controller.shutdown()
