"""Wires the datastore, ledger, pipeline and controller for one terminal session."""

from ..auth import AuthProvider, StaticAuthProvider
from ..config import ForgeConfig
from ..events import init_event_recorder, shutdown_event_recorder
from ..generation import ChatProvider, ClaudeAgentProvider, GenerationPipeline
from ..logging_config import get_logger
from ..quota import QuotaLedger, RateLimiter
from ..storage import DraftPersister, DraftStore, PromptDatabase
from .controller import ConversationController

logger = get_logger(__name__)


class ForgeSession:
    """Main harness for a PromptForge session.

    Use as an async context manager; ``controller`` is ready inside the block
    and the pending draft and event batch are flushed on exit.
    """

    def __init__(
        self,
        config: ForgeConfig | None = None,
        auth: AuthProvider | None = None,
        provider: ChatProvider | None = None,
        session_id: str | None = None,
    ):
        self.config = config or ForgeConfig()
        self.auth = auth or StaticAuthProvider()
        self.provider = provider
        self.session_id = session_id or "local"
        self.db: PromptDatabase | None = None
        self.events = None
        self.controller: ConversationController | None = None

    async def __aenter__(self):
        self.db = PromptDatabase(self.config.db_path)
        await self.db.connect()
        user = self.auth.get_current_user()
        await self.db.ensure_session(self.session_id, user.id if user else None)
        self.events = await init_event_recorder(self.db)

        pipeline = GenerationPipeline(
            provider=self.provider or ClaudeAgentProvider(),
            ledger=QuotaLedger(
                self.db,
                billing_cycle_days=self.config.billing_cycle_days,
                trial_days=self.config.trial_days,
            ),
            rate_limiter=RateLimiter(
                user_limit=self.config.user_rate_limit,
                ip_limit=self.config.ip_rate_limit,
                window_seconds=self.config.rate_window_seconds,
            ),
            auth=self.auth,
            config=self.config,
            db=self.db,
            events=self.events,
            session_id=self.session_id,
        )
        drafts = DraftPersister(
            DraftStore(self.config.draft_path, expiry_hours=self.config.draft_expiry_hours),
            debounce_seconds=self.config.draft_debounce_seconds,
        )
        self.controller = ConversationController(
            pipeline,
            config=self.config,
            db=self.db,
            drafts=drafts,
            events=self.events,
            session_id=self.session_id,
        )
        await self.controller.load_preferences()
        logger.info("Session %s started", self.session_id)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.controller:
            await self.controller.shutdown()
        if self.events:
            await shutdown_event_recorder()
            self.events = None
        if self.db:
            await self.db.close()
        logger.info("Session %s closed", self.session_id)
