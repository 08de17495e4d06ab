from tasklynk.models.user import User
from tasklynk.models.job import Job
from tasklynk.models.bid import Bid
from tasklynk.models.payment import Payment
from tasklynk.models.payment_request import PaymentRequest
from tasklynk.models.message import Message
from tasklynk.models.attachment import Attachment
from tasklynk.models.rating import Rating
from tasklynk.models.invoice import Invoice
from tasklynk.models.notification import Notification
from tasklynk.models.pending_registration import PendingRegistration
from tasklynk.models.outbound_email import OutboundEmail

__all__ = [
    "User", "Job", "Bid", "Payment", "PaymentRequest", "Message",
    "Attachment", "Rating", "Invoice", "Notification", "PendingRegistration",
    "OutboundEmail",
]
