"""
Main Orchestrator for fintrack

Builds one storage backend and wires every service to it:
1. Storage (memory, SQL or Google Sheets, per STORAGE_BACKEND)
2. Activity logger persisting into that storage
3. Ledger, savings goals, purchases, lend/borrow, donations, profiles,
   notifications
4. Lifecycle workflows (user deletion, last wish) and reports

DESIGN DECISION: Services share a single storage object and a single
activity logger. Side effects of one service (a purchase created by an
expense, a cascade during account deletion) are therefore logged in
the same history as direct edits.
"""

from typing import Optional

import structlog
from pydantic import ValidationError

from fintrack.audit import ActivityLogger
from fintrack.config import Settings, get_settings
from fintrack.ledger import (
    DonationSavingService,
    LedgerService,
    LendBorrowService,
    PurchaseService,
    SavingsGoalService,
)
from fintrack.lifecycle import LastWishService, UserDeletionWorkflow
from fintrack.profiles import NotificationService, ProfileService
from fintrack.queries import ReportExecutor
from fintrack.services.attachments import AttachmentStoreInterface, CloudinaryAttachmentStore
from fintrack.services.mail import MailerInterface, SmtpMailer
from fintrack.services.storage import (
    FinanceStorageInterface,
    GoogleSheetsClient,
    GoogleSheetsStorage,
    InMemoryStorage,
    SqlAlchemyStorage,
)
from fintrack.validation import TransactionValidator


logger = structlog.get_logger()


class FinanceApp:
    """Container for the wired-up services."""

    def __init__(
        self,
        storage: FinanceStorageInterface,
        activity_logger: ActivityLogger,
        ledger: LedgerService,
        savings_goals: SavingsGoalService,
        purchases: PurchaseService,
        lend_borrow: LendBorrowService,
        donations: DonationSavingService,
        profiles: ProfileService,
        notifications: NotificationService,
        deletion: UserDeletionWorkflow,
        last_wish: LastWishService,
        reports: ReportExecutor,
    ):
        self.storage = storage
        self.activity_logger = activity_logger
        self.ledger = ledger
        self.savings_goals = savings_goals
        self.purchases = purchases
        self.lend_borrow = lend_borrow
        self.donations = donations
        self.profiles = profiles
        self.notifications = notifications
        self.deletion = deletion
        self.last_wish = last_wish
        self.reports = reports


def create_storage(settings: Settings) -> FinanceStorageInterface:
    """Build the backend named by STORAGE_BACKEND."""
    backend = settings.app.storage_backend
    if backend == "sql":
        database = settings.database
        return SqlAlchemyStorage.from_url(database.url, echo=database.echo)
    if backend == "google_sheets":
        return GoogleSheetsStorage(GoogleSheetsClient(settings.google_sheets))
    return InMemoryStorage()


def create_attachment_store(settings: Settings) -> Optional[AttachmentStoreInterface]:
    try:
        cloudinary_settings = settings.cloudinary
    except ValidationError as e:
        # Attachments are optional; everything else works without them
        logger.warning("attachments_not_configured", error=str(e))
        return None
    return CloudinaryAttachmentStore(
        cloudinary_settings,
        max_upload_bytes=settings.app.max_upload_size_bytes,
    )


def create_app_components(
    settings: Optional[Settings] = None,
    storage: Optional[FinanceStorageInterface] = None,
    mailer: Optional[MailerInterface] = None,
    attachment_store: Optional[AttachmentStoreInterface] = None,
) -> FinanceApp:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from (defaults to get_settings())
        storage: Use this backend instead of building one
        mailer: Use this mailer instead of SMTP
        attachment_store: Use this store instead of Cloudinary

    Returns:
        FinanceApp holding every service
    """
    settings = settings or get_settings()
    app_settings = settings.app

    storage = storage or create_storage(settings)
    if attachment_store is None:
        attachment_store = create_attachment_store(settings)
    mailer = mailer or SmtpMailer(settings.smtp)

    activity_logger = ActivityLogger(storage)
    purchases = PurchaseService(storage, activity_logger, attachment_store)
    donations = DonationSavingService(
        storage, activity_logger, app_settings.transaction_id_prefix
    )
    ledger = LedgerService(
        storage,
        activity_logger,
        validator=TransactionValidator(app_settings),
        purchases=purchases,
        donations=donations,
        settings=app_settings,
    )

    logger.info(
        "app_components_created",
        storage_backend=app_settings.storage_backend,
        attachments=attachment_store is not None,
    )

    return FinanceApp(
        storage=storage,
        activity_logger=activity_logger,
        ledger=ledger,
        savings_goals=SavingsGoalService(storage, activity_logger, ledger),
        purchases=purchases,
        lend_borrow=LendBorrowService(storage, activity_logger),
        donations=donations,
        profiles=ProfileService(storage, activity_logger),
        notifications=NotificationService(storage, activity_logger),
        deletion=UserDeletionWorkflow(
            storage, activity_logger, attachment_store, settings=app_settings
        ),
        last_wish=LastWishService(storage, mailer, activity_logger, settings=app_settings),
        reports=ReportExecutor(storage),
    )
