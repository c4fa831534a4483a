"""
Payment processing hand-off for completed shifts.

The engine only requests a payment; settlement happens in the billing
service, which picks up ``PENDING`` rows.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from ..core.errors import ActionExecutionError
from ..models.payment import Payment
from ..models.shift import Shift


class SqlPaymentProcessor:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self.logger = logging.getLogger("payments")

    def process_shift_payment(self, shift_id: str) -> None:
        with self._session_factory() as db:
            if db.get(Shift, shift_id) is None:
                raise ActionExecutionError(f"Shift '{shift_id}' not found for payment")
            existing = db.query(Payment).filter(Payment.shift_id == shift_id).first()
            if existing is not None:
                self.logger.info("Payment already requested shift_id=%s payment_id=%s", shift_id, existing.id)
                return
            payment = Payment(shift_id=shift_id, status="PENDING")
            db.add(payment)
            db.commit()
            self.logger.info("Payment requested shift_id=%s payment_id=%s", shift_id, payment.id)
