"""Component wiring.

`build_services` assembles the engine around one database session. Nothing
here is a process-wide singleton; callers own the session lifetime.
"""

from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from membermail.clock import SystemClock
from membermail.config import Settings, get_settings
from membermail.database.database import get_db
from membermail.database.option_repository import OptionRepository
from membermail.database.user_repository import UserRepository
from membermail.engine.consent import Consent
from membermail.engine.delivery_queue import DeliveryQueue
from membermail.engine.event_log import EventLog
from membermail.engine.hooks import EventBus, HookRegistry
from membermail.engine.lifecycle_scanner import LifecycleScanner
from membermail.engine.sender import EmailSender
from membermail.engine.templates import TemplateStore
from membermail.engine.verification import VerificationProtocol
from membermail.integrations.mailer import SmtpMailSender
from membermail.models.constants import EVENT_USER_REGISTERED, HOOK_LIFECYCLE_SCAN, HOOK_PROCESS_QUEUE
from membermail.models.user import User


class Services:
    """Container for one wired component graph."""

    def __init__(self, settings, clock, store, directory, event_log, hooks, events,
                 templates, consent, sender, verification, queue, scanner):
        self.settings = settings
        self.clock = clock
        self.store = store
        self.directory = directory
        self.event_log = event_log
        self.hooks = hooks
        self.events = events
        self.templates = templates
        self.consent = consent
        self.sender = sender
        self.verification = verification
        self.queue = queue
        self.scanner = scanner

    def register_user(self, user: User) -> User:
        """Store a new account and announce it on the `user_registered` event."""
        if not user.registered_at:
            user = user.model_copy(update={"registered_at": self.clock.now()})
        created = self.directory.create_or_update(user)
        self.events.emit(EVENT_USER_REGISTERED, created.id)
        return created


def build_services(
    db: Session,
    scheduler,
    settings: Optional[Settings] = None,
    mailer=None,
    clock=None,
    events: Optional[EventBus] = None,
) -> Services:
    """Wire every component against `db` and register queue hooks."""
    settings = settings or get_settings()
    clock = clock or SystemClock()
    mailer = mailer or SmtpMailSender(settings)
    events = events or EventBus()

    store = OptionRepository(db)
    directory = UserRepository(db)
    event_log = EventLog(store, clock)
    hooks = HookRegistry()
    templates = TemplateStore(settings, event_log=event_log)
    consent = Consent(directory, event_log, events, clock, settings)
    sender = EmailSender(directory, templates, mailer, consent, event_log, clock, settings)
    verification = VerificationProtocol(directory, sender, event_log, events, clock, settings)
    queue = DeliveryQueue(store, scheduler, hooks, event_log, clock)
    scanner = LifecycleScanner(directory, queue, sender, consent, event_log, events, clock, settings)

    sender.register_hooks(hooks)
    verification.register_hooks(hooks)
    verification.subscribe(events)
    hooks.register(HOOK_PROCESS_QUEUE, queue.process)
    hooks.register(HOOK_LIFECYCLE_SCAN, scanner.run_tasks)

    return Services(
        settings=settings,
        clock=clock,
        store=store,
        directory=directory,
        event_log=event_log,
        hooks=hooks,
        events=events,
        templates=templates,
        consent=consent,
        sender=sender,
        verification=verification,
        queue=queue,
        scanner=scanner,
    )


def get_services(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> Services:
    """Per-request component graph (dependency for FastAPI)."""
    from membermail.worker import get_scheduler_service

    return build_services(db, get_scheduler_service().adapter, settings=settings)
