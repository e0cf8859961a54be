from enum import StrEnum


class BookingScope(StrEnum):
    # Admin dashboard scopes
    ADMIN = "admin:bookings"  # umbrella scope, implies every scope below
    ADMIN_READ = "admin:bookings:read"  # list bookings with customer details
    ADMIN_DELETE = "admin:bookings:delete"  # cancel bookings, purge abandoned ones
    ADMIN_REPAIR = "admin:bookings:repair"  # run data-repair migrations

    # Calendar integration
    CALENDAR = "admin:calendar"  # register / inspect calendar watch channels
