"""
Customer model for people placing orders.

This module contains:
- Customer: Order placer, found or created by e-mail at intake
"""

from decimal import Decimal

from sqlalchemy import Column, String, Integer, Boolean, DateTime, Numeric, CheckConstraint
from sqlalchemy.orm import relationship

from .base import BaseModel


class Customer(BaseModel):
    """
    Customer model with running order statistics.

    Attributes:
        first_name, last_name: Customer name
        email: Unique, stored lower-cased
        phone: Normalized phone number
        notification_pref: 'email', 'sms' or 'both'
        sms_opt_in: Customer agreed to SMS notifications
        credit_balance: Store credit in dollars
        total_orders: Number of accepted orders
        total_spent: Sum of accepted order totals
        first_order_date, last_order_date: First/most recent accepted order
    """

    __tablename__ = "customers"

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(254), nullable=False, unique=True, index=True)
    phone = Column(String(20), nullable=True)
    notification_pref = Column(String(10), nullable=False, default="email")
    sms_opt_in = Column(Boolean, nullable=False, default=False)

    credit_balance = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_orders = Column(Integer, nullable=False, default=0)
    total_spent = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    first_order_date = Column(DateTime, nullable=True)
    last_order_date = Column(DateTime, nullable=True)

    orders = relationship("Order", back_populates="customer")

    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_customer_credit_non_negative"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"Customer(id={self.id}, email='{self.email}')"
