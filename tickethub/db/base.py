# Import every model so Base.metadata is complete (Alembic autogenerate, create_all in tests).
from tickethub.db.session import Base  # noqa: F401
from tickethub.models.user import User  # noqa: F401
from tickethub.models.customer import Customer  # noqa: F401
from tickethub.models.trip import Trip  # noqa: F401
from tickethub.models.booking_session import BookingSession  # noqa: F401
from tickethub.models.receipt import Receipt  # noqa: F401
from tickethub.models.ticket import Ticket  # noqa: F401
from tickethub.models.discount_voucher import DiscountVoucher  # noqa: F401
from tickethub.models.gnpl_account import GnplAccount  # noqa: F401
from tickethub.models.gnpl_payment import GnplPayment  # noqa: F401
from tickethub.models.payment_reference import PaymentReference  # noqa: F401
from tickethub.models.manual_cash_remittance import ManualCashRemittance  # noqa: F401
from tickethub.models.audit_log import AuditLog  # noqa: F401
from tickethub.models.notification_log import NotificationLog  # noqa: F401
from tickethub.models.setting import Setting  # noqa: F401
