"""
Shared fixtures.

Every external service is faked: no network, no SMTP, no Cloudinary.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest
import sqlalchemy as sa
from sqlalchemy.pool import StaticPool

from fintrack.audit import ActivityLogger
from fintrack.config import AppSettings
from fintrack.ledger import (
    DonationSavingService,
    LedgerService,
    LendBorrowService,
    PurchaseService,
    SavingsGoalService,
)
from fintrack.lifecycle import LastWishService, UserDeletionWorkflow
from fintrack.models.finance import AccountType, PurchaseAttachment
from fintrack.profiles import NotificationService, ProfileService
from fintrack.services.attachments import AttachmentError, AttachmentStoreInterface
from fintrack.services.mail import MailDeliveryError, MailerInterface, MailMessage
from fintrack.services.storage import InMemoryStorage, SqlAlchemyStorage


# =============================================================================
# FAKE EXTERNAL SERVICES
# =============================================================================

class FakeMailer(MailerInterface):
    """Records sent messages; addresses in fail_for raise MailDeliveryError."""

    def __init__(self, fail_for: Optional[set[str]] = None):
        self.sent: list[MailMessage] = []
        self.fail_for = fail_for or set()

    async def send(self, message: MailMessage) -> None:
        if message.to in self.fail_for:
            raise MailDeliveryError(f"Failed to send mail to {message.to}: mailbox unavailable")
        self.sent.append(message)


class FakeAttachmentStore(AttachmentStoreInterface):
    """Keeps uploaded files in a dict keyed by public id."""

    def __init__(self, fail_deletes: int = 0):
        self.files: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_deletes = fail_deletes

    async def upload(
        self,
        content: bytes,
        file_name: str,
        purchase_id: UUID,
        user_id: UUID,
        mime_type: Optional[str] = None,
    ) -> PurchaseAttachment:
        public_id = f"fintrack/{user_id}/{purchase_id}_{len(self.files)}"
        self.files[public_id] = content
        return PurchaseAttachment(
            purchase_id=purchase_id,
            user_id=user_id,
            file_name=file_name,
            file_path=f"https://files.example.com/{public_id}",
            file_size=len(content),
            mime_type=mime_type or "application/octet-stream",
            public_id=public_id,
        )

    async def delete(self, public_id: str) -> bool:
        if self.fail_deletes > 0:
            self.fail_deletes -= 1
            raise AttachmentError("Attachment service unavailable")
        self.files.pop(public_id, None)
        self.deleted.append(public_id)
        return True


# =============================================================================
# CORE FIXTURES
# =============================================================================

@pytest.fixture
def app_settings():
    return AppSettings(
        storage_backend="memory",
        default_currency="USD",
        transaction_id_prefix="F",
        deletion_step_attempts=2,
    )


@pytest.fixture
def storage():
    return InMemoryStorage()


def make_sql_storage() -> SqlAlchemyStorage:
    engine = sa.create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    return SqlAlchemyStorage(engine)


@pytest.fixture
def sql_storage():
    return make_sql_storage()


@pytest.fixture(params=["memory", "sql"])
def backend_storage(request):
    """
    Both record backends in turn.

    Suites that should hold on every backend override `storage` with
    this fixture.
    """
    if request.param == "sql":
        return make_sql_storage()
    return InMemoryStorage()


@pytest.fixture
def activity_logger(storage):
    return ActivityLogger(storage)


@pytest.fixture
def attachment_store():
    return FakeAttachmentStore()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def purchases(storage, activity_logger, attachment_store):
    return PurchaseService(storage, activity_logger, attachment_store)


@pytest.fixture
def donations(storage, activity_logger):
    return DonationSavingService(storage, activity_logger)


@pytest.fixture
def ledger(storage, activity_logger, purchases, donations, app_settings):
    return LedgerService(
        storage,
        activity_logger,
        purchases=purchases,
        donations=donations,
        settings=app_settings,
    )


@pytest.fixture
def lend_borrow(storage, activity_logger):
    return LendBorrowService(storage, activity_logger)


@pytest.fixture
def savings_goals(storage, activity_logger, ledger):
    return SavingsGoalService(storage, activity_logger, ledger)


@pytest.fixture
def profiles(storage, activity_logger):
    return ProfileService(storage, activity_logger)


@pytest.fixture
def notifications(storage, activity_logger):
    return NotificationService(storage, activity_logger)


@pytest.fixture
def deletion(storage, activity_logger, attachment_store, app_settings):
    return UserDeletionWorkflow(
        storage,
        activity_logger,
        attachment_store,
        settings=app_settings,
        retry_wait_seconds=0,
    )


@pytest.fixture
def last_wish(storage, mailer, activity_logger, app_settings):
    return LastWishService(storage, mailer, activity_logger, settings=app_settings)


@pytest.fixture
async def profile(profiles, user_id):
    return await profiles.register(user_id, "owner@example.com", "Owner")


@pytest.fixture
async def checking(ledger, profile, user_id):
    return await ledger.create_account(
        user_id=user_id,
        name="Checking",
        type=AccountType.CHECKING,
        currency="USD",
        initial_balance=Decimal("1000.00"),
    )


@pytest.fixture
async def savings(ledger, profile, user_id):
    return await ledger.create_account(
        user_id=user_id,
        name="Savings",
        type=AccountType.SAVINGS,
        currency="USD",
        initial_balance=Decimal("0"),
    )


@pytest.fixture
async def stranger(profiles):
    """A second registered user."""
    return await profiles.register(uuid4(), "stranger@example.com", "Stranger")
