"""
Cancellation refund policy.
Refund share is a step function of the hours left before the appointment.
"""

# (hours strictly greater than, percent refunded), checked in order
REFUND_TIERS = (
    (24, 100),
    (12, 50),
    (6, 25),
)


def refund_percent(hours_until_appointment: float) -> int:
    for threshold, percent in REFUND_TIERS:
        if hours_until_appointment > threshold:
            return percent
    return 0


def calculate_refund_amount(paid_amount: int, hours_until_appointment: float) -> int:
    """Refund in minor units, floored at each tier."""
    if paid_amount <= 0:
        return 0
    return paid_amount * refund_percent(hours_until_appointment) // 100
