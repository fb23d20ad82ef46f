#!/usr/bin/env python3
from dataclasses import dataclass
from typing import Optional, Sequence, TYPE_CHECKING

from telegram.error import TelegramError
from telegram.ext import ApplicationBuilder, ContextTypes, JobQueue

from sendapp.admin_directory import AdminDirectory
from sendapp.bootstrap import ApplicationServices
from sendapp.config import Config
from sendapp.cooldown import TagCooldownManager
from sendapp.deletion_queue import MessageDeletionQueue
from sendapp.entities import Session
from sendapp.join_aggregator import JoinAggregator
from sendapp.moderation import SpamModerator
from sendapp.notifier import GameNotifier
from sendapp.sendbotcontrol import SendBotController
from sendapp.sendbotmodel import SendBotModel
from sendapp.sendbotview import SendBotViewer
from sendapp.utils.logging_helpers import ContextLoggerAdapter, add_context


@dataclass(frozen=True)
class WebhookSettings:
    secret_token: Optional[str]
    max_connections: Optional[int]
    allowed_updates: Optional[Sequence[str]]
    drop_pending_updates: bool = True


if TYPE_CHECKING:
    from telegram.ext import Application


class SendBot:
    """Telegram bot wrapper around a PTB async ``Application``.

    ``main.py`` injects the long-lived services (scheduler, session store,
    surge tracker, retry policy, profile client). ``SendBot`` wires the
    view, notifier, join aggregator and model around each ``Application``
    it builds and hands them to the controller for handler registration.
    """

    def __init__(
        self,
        token: str,
        cfg: Config,
        *,
        logger: ContextLoggerAdapter,
        services: ApplicationServices,
    ):
        self._cfg = cfg
        self._token = token
        self._logger = add_context(logger)
        self._services = services
        self._webhook_settings = WebhookSettings(
            secret_token=cfg.WEBHOOK_SECRET or None,
            max_connections=cfg.MAX_CONNECTIONS,
            allowed_updates=cfg.ALLOWED_UPDATES,
            drop_pending_updates=True,
        )
        self._application: Optional["Application"] = None
        self._job_queue: Optional[JobQueue] = None
        self._deletion_queue: Optional[MessageDeletionQueue] = None
        self._view: Optional[SendBotViewer] = None
        self._aggregator: Optional[JoinAggregator] = None
        self._model: Optional[SendBotModel] = None
        self._controller: Optional[SendBotController] = None
        self._build_application()

    @property
    def application(self) -> Optional["Application"]:
        return self._application

    @property
    def model(self) -> Optional[SendBotModel]:
        return self._model

    def run(self) -> None:
        """Start the bot using the webhook listener."""
        try:
            self.run_webhook()
        except (TelegramError, OSError) as exc:
            if not self._handle_webhook_start_failure(exc):
                raise

    def run_webhook(self) -> None:
        """Start the bot using webhook delivery."""
        if self._application is None:
            self._build_application()
        self._logger.info(
            "Starting webhook listener on %s:%s%s targeting %s",
            self._cfg.WEBHOOK_LISTEN,
            self._cfg.WEBHOOK_PORT,
            self._cfg.WEBHOOK_PATH,
            self._cfg.WEBHOOK_PUBLIC_URL,
        )
        self._schedule_webhook_verification()
        settings = self._webhook_settings
        try:
            self._application.run_webhook(
                listen=self._cfg.WEBHOOK_LISTEN,
                port=self._cfg.WEBHOOK_PORT,
                url_path=self._cfg.WEBHOOK_PATH,
                webhook_url=self._cfg.WEBHOOK_PUBLIC_URL,
                secret_token=settings.secret_token,
                allowed_updates=settings.allowed_updates,
                drop_pending_updates=settings.drop_pending_updates,
                max_connections=settings.max_connections or 40,
            )
        except Exception:
            self._logger.exception("Webhook run terminated due to an error.")
            raise
        finally:
            self._logger.info("Webhook listener stopped.")

    def run_polling(self) -> None:
        """Start the bot using long polling."""
        if self._application is None:
            self._build_application()
        self._logger.info(
            "Starting polling mode for development; webhook configuration will be ignored."
        )
        try:
            self._application.run_polling(
                allowed_updates=self._webhook_settings.allowed_updates,
                drop_pending_updates=self._webhook_settings.drop_pending_updates,
            )
        except Exception:
            self._logger.exception("Polling run terminated due to an error.")
            raise
        finally:
            self._logger.info("Polling stopped.")

    def _handle_webhook_start_failure(self, exc: Exception) -> bool:
        """Fall back to polling when allowed.

        Returns True when the failure was handled and False when the caller
        should re-raise the exception.
        """

        if self._cfg.ALLOW_POLLING_FALLBACK:
            self._logger.error(
                "Webhook startup failed; falling back to polling mode because "
                "ALLOW_POLLING_FALLBACK is enabled. Error: %s",
                exc,
            )
            self._build_application()
            self.run_polling()
            return True

        if self._should_force_polling_due_to_webhook_failure(exc):
            self._logger.error(
                "Webhook startup failed due to a network resolution error; automatically "
                "falling back to polling mode. Error: %s",
                exc,
            )
            self._build_application()
            self.run_polling()
            return True

        return False

    def _build_application(self) -> None:
        self._dispose_application()

        self._job_queue = JobQueue()
        builder = (
            ApplicationBuilder()
            .token(self._token)
            .concurrent_updates(True)
            .post_shutdown(self._on_application_post_shutdown)
            .post_stop(self._cleanup_webhook)
            .job_queue(self._job_queue)
        )
        self._application = builder.build()
        self._application.add_error_handler(self._handle_error)

        services = self._services
        cfg = self._cfg
        deletion = cfg.constants.deletion
        logger = self._logger

        safe_ops = services.telegram_safeops_factory(bot=self._application.bot)
        self._deletion_queue = MessageDeletionQueue(
            safe_ops,
            batch_size=int(deletion.get("batch_size", 10)),
            batch_delay=float(deletion.get("batch_delay_seconds", 0.1)),
            logger=logger.getChild("deletion"),
        )
        self._view = SendBotViewer(
            safe_ops, self._deletion_queue, logger=logger.getChild("view")
        )
        notifier = GameNotifier(
            self._view,
            profiles=services.profile_client,
            logger=logger.getChild("notifier"),
        )
        admin_directory = AdminDirectory(
            safe_ops,
            ttl_seconds=cfg.ADMIN_CACHE_TTL_SECONDS,
            maxsize=cfg.ADMIN_CACHE_MAXSIZE,
            logger=logger.getChild("admins"),
        )
        cooldowns = TagCooldownManager(
            self._view,
            services.scheduler,
            duration_seconds=cfg.TAG_COOLDOWN_SECONDS,
            refresh_interval=cfg.TAG_COOLDOWN_REFRESH_SECONDS,
            logger=logger.getChild("cooldown"),
        )
        self._aggregator = JoinAggregator(
            session_store=services.session_store,
            scheduler=services.scheduler,
            notifier=notifier,
            collection_window_seconds=cfg.COLLECTION_WINDOW_SECONDS,
            on_completed=self._on_session_completed,
            logger=logger.getChild("join"),
        )
        moderator = SpamModerator(
            self._view,
            session_store=services.session_store,
            cooldowns=cooldowns,
            admin_directory=admin_directory,
            logger=logger.getChild("moderation"),
        )
        self._model = SendBotModel(
            view=self._view,
            cfg=cfg,
            scheduler=services.scheduler,
            session_store=services.session_store,
            surge_tracker=services.surge_tracker,
            join_aggregator=self._aggregator,
            notifier=notifier,
            admin_directory=admin_directory,
            cooldowns=cooldowns,
            moderator=moderator,
            logger=logger.getChild("model"),
        )
        self._controller = SendBotController(self._model, self._application)

    def _dispose_application(self) -> None:
        if self._application is None:
            return

        try:
            stop_running = getattr(self._application, "stop_running", None)
            if callable(stop_running):
                stop_running()
        except Exception:
            self._logger.debug("Failed to stop running application cleanly.", exc_info=True)

        self._application = None
        self._job_queue = None
        self._controller = None
        self._model = None
        self._aggregator = None
        self._view = None
        self._deletion_queue = None

    async def _on_session_completed(self, session: Session) -> None:
        if self._model is not None:
            await self._model.on_session_completed(session)

    async def _on_application_post_shutdown(self, application: "Application") -> None:
        if self._deletion_queue is not None:
            try:
                await self._deletion_queue.close()
            except Exception:
                self._logger.exception("Failed to drain the message deletion queue")
        try:
            await self._services.scheduler.close()
        except Exception:
            self._logger.exception("Failed to stop scheduled callbacks")
        try:
            await self._services.profile_client.close()
        except Exception:
            self._logger.exception("Failed to close the Send profile client")

    def _should_force_polling_due_to_webhook_failure(self, exc: Exception) -> bool:
        for error in self._iter_exception_chain(exc):
            message = str(error).lower()
            if any(
                keyword in message
                for keyword in (
                    "failed to resolve host",
                    "name or service not known",
                    "temporary failure in name resolution",
                    "getaddrinfo failed",
                )
            ):
                return True
        return False

    @staticmethod
    def _iter_exception_chain(exc: Exception):
        seen = set()
        stack = [exc]
        while stack:
            current = stack.pop()
            if current is None or id(current) in seen:
                continue
            seen.add(id(current))
            yield current
            stack.append(getattr(current, "__cause__", None))
            stack.append(getattr(current, "__context__", None))

    def _schedule_webhook_verification(self) -> None:
        try:
            self._application.job_queue.run_once(
                self._webhook_verification_job,
                when=1.0,
                name="webhook-verification",
            )
        except Exception:
            self._logger.exception("Unable to schedule webhook verification job.")

    async def _webhook_verification_job(
        self, _context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        await self._verify_webhook_registration()

    async def _verify_webhook_registration(self) -> None:
        try:
            webhook_info = await self._application.bot.get_webhook_info()
        except Exception:
            self._logger.exception("Unable to confirm webhook registration with Telegram.")
            return

        expected_url = self._cfg.WEBHOOK_PUBLIC_URL or ""
        if webhook_info.url == expected_url:
            self._logger.info("Webhook registered at expected URL %s", webhook_info.url)
        else:
            self._logger.warning(
                "Webhook URL mismatch: expected %s, got %s",
                expected_url,
                webhook_info.url,
            )

        settings = self._webhook_settings
        registered_allowed_updates = tuple(webhook_info.allowed_updates or ())
        expected_allowed_updates = tuple(settings.allowed_updates or ())
        if expected_allowed_updates != registered_allowed_updates:
            self._logger.warning(
                "Webhook allowed updates mismatch: expected %s, got %s",
                expected_allowed_updates,
                registered_allowed_updates,
            )

        registered_max_connections = webhook_info.max_connections
        if (
            settings.max_connections is not None
            and registered_max_connections is not None
            and settings.max_connections != registered_max_connections
        ):
            self._logger.warning(
                "Webhook max_connections mismatch: expected %s, got %s",
                settings.max_connections,
                registered_max_connections,
            )

    async def _cleanup_webhook(self, application: "Application") -> None:
        drop_updates = bool(self._webhook_settings.drop_pending_updates)
        self._logger.info("Removing webhook; drop_pending_updates=%s", drop_updates)
        try:
            await application.bot.delete_webhook(drop_pending_updates=drop_updates)
        except Exception:
            self._logger.exception("Failed to delete webhook during shutdown.")

    async def _handle_error(
        self, update: object, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        error = getattr(context, "error", None)
        if isinstance(error, BaseException):
            self._logger.error(
                "Error while processing update %s", getattr(update, "update_id", update),
                exc_info=error,
            )
        else:
            self._logger.error(
                "Error while processing update %s with payload %s",
                getattr(update, "update_id", update),
                error,
            )
