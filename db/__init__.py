from .db import (
    Base,
    Event,
    Household,
    ReminderState,
    SmsMessage,
    EmailMessage,
    STATUS_ACTIVE,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    FIRST_REMINDER_STEP,
    get_engine,
    get_session,
    create_all,
    fetch_due_reminders,
    list_due_reminders,
    count_reminders_by_status,
    conditional_update_reminder,
    claim_reminder,
    release_reminder,
    advance_reminder,
    complete_reminder,
    insert_sms_message,
    insert_email_message,
    email_message_exists,
    first_reminder_at,
    reminder_at,
    reset_household_reminders,
    dispose_engine,
)  # noqa: F401
