from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class PaymentStatus(StrEnum):
    PENDING = "pending"  # created, customer sent to checkout
    SUCCESS = "success"  # checkout session verified as paid
    FAILED = "failed"  # checkout abandoned or declined


class BookingKind(StrEnum):
    STUDIO = "studio"
    SERVICE = "service"


class BookingBase(Model):
    id = fields.UUIDField(primary_key=True)

    start_date = fields.DateField()  # civil date in the studio's time zone
    start_time = fields.CharField(max_length=16)  # "11:00 AM"
    end_time = fields.CharField(max_length=16)

    subtotal = fields.DecimalField(max_digits=10, decimal_places=2)
    estimated_total = fields.DecimalField(max_digits=10, decimal_places=2)
    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)

    customer_name = fields.CharField(max_length=255)
    customer_email = fields.CharField(max_length=255)
    customer_phone = fields.CharField(max_length=32)

    calendar_event_id = fields.CharField(max_length=255, null=True, unique=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        abstract = True


class Booking(BookingBase):
    studio = fields.CharField(max_length=255)
    items = fields.JSONField(default=list)  # [{name, quantity, price}]

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]


class ServiceBooking(BookingBase):
    services = fields.JSONField(default=list)  # [{name, quantity, price}]

    class Meta:  # type: ignore
        table = "service_bookings"
        ordering = ["-created_at"]


class CalendarWatch(Model):
    """Google Calendar push channel currently registered for a booking kind."""

    id = fields.IntField(primary_key=True)
    kind = fields.CharEnumField(BookingKind, unique=True)
    calendar_id = fields.CharField(max_length=255)
    channel_id = fields.CharField(max_length=64)
    resource_id = fields.CharField(max_length=255, null=True)
    webhook_url = fields.CharField(max_length=1024)
    expiration = fields.DatetimeField()
    registered_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "calendar_watches"
