"""Application constants."""

from ritmo.db.enums import CadenceEventType

# Business-day offsets for the four cadence steps, in generation order.
CADENCE_SCHEDULE: tuple[tuple[CadenceEventType, int], ...] = (
    (CadenceEventType.EMAIL_D1, 1),
    (CadenceEventType.EMAIL_D3, 3),
    (CadenceEventType.CALL_D7, 7),
    (CadenceEventType.EMAIL_D14, 14),
)

# Quotes at or above this value get a HIGH priority D+7 call
HIGH_VALUE_THRESHOLD = 1000

# Email template code per email step
EVENT_TEMPLATE_CODES: dict[str, str] = {
    CadenceEventType.EMAIL_D1.value: "T2",
    CadenceEventType.EMAIL_D3.value: "T3",
    CadenceEventType.EMAIL_D14.value: "T5",
}

DEFAULT_CLAIM_TIMEOUT_MINUTES = 15
DEFAULT_BATCH_SIZE = 50
DEFAULT_MAX_ATTEMPTS = 3
