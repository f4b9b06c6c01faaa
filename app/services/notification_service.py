"""
PayCore - Payslip Notification Service

Renders payslip emails with Jinja2 and hands them to the notification
collaborator for delivery.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.config import settings
from app.models.payroll import Payslip
from app.schemas.compensation import EmployeeRef
from app.services.hr_client import HRServicesClient
from app.utils.error_handling import (
    BusinessRuleException,
    ErrorCode,
    NotificationDeliveryError,
    UpstreamServiceError,
)

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"


@dataclass
class DeliveryReceipt:
    """Acknowledgement of a payslip email handed to the dispatcher."""
    payslip_id: int
    recipient: str
    subject: str
    sent_at: datetime
    sent_by: Optional[int] = None
    message_id: Optional[str] = None


@dataclass
class RenderedEmail:
    subject: str
    body_text: str
    body_html: str


class PayslipNotifier:
    """Service for rendering and dispatching payslip emails."""

    def __init__(self, gateway: HRServicesClient, template_dir: Path = TEMPLATE_DIR):
        self.gateway = gateway
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
            trim_blocks=True,
        )

    def render(
        self,
        payslip: Payslip,
        employee: EmployeeRef,
        custom_subject: Optional[str] = None,
        custom_message: Optional[str] = None,
    ) -> RenderedEmail:
        period = f"{payslip.pay_period_month:02d}/{payslip.pay_period_year}"
        context = {
            "payslip": payslip,
            "period": period,
            "allowances": payslip.allowance_breakdown or [],
            "employee_name": employee.full_name or payslip.employee_name or f"employee {employee.id}",
            "custom_message": custom_message,
            "from_name": settings.email_from_name,
        }
        return RenderedEmail(
            subject=custom_subject or f"Your payslip for {period}",
            body_text=self.env.get_template("payslip.txt").render(**context),
            body_html=self.env.get_template("payslip.html").render(**context),
        )

    async def send_payslip(
        self,
        payslip: Payslip,
        employee: EmployeeRef,
        custom_subject: Optional[str] = None,
        custom_message: Optional[str] = None,
        sent_by: Optional[int] = None,
    ) -> DeliveryReceipt:
        """
        Send a payslip to the employee's email address.

        Raises NotificationDeliveryError when the dispatcher is unavailable
        or refuses the message.
        """
        if not employee.email:
            raise BusinessRuleException(
                message=f"Employee {employee.id} has no email address on file",
                rule="RECIPIENT_EMAIL_REQUIRED",
                code=ErrorCode.NOT_DELIVERABLE,
                details={"employee_id": employee.id, "payslip_id": payslip.id},
            )

        email = self.render(payslip, employee, custom_subject, custom_message)

        try:
            receipt = await self.gateway.dispatch_email(
                to=employee.email,
                subject=email.subject,
                body_text=email.body_text,
                body_html=email.body_html,
                metadata={"payslip_id": payslip.id, "sent_by": sent_by},
            )
        except UpstreamServiceError as e:
            raise NotificationDeliveryError(e.message, original_error=e)

        logger.info(f"Payslip {payslip.id} emailed to {employee.email} (message {receipt.message_id})")

        return DeliveryReceipt(
            payslip_id=payslip.id,
            recipient=employee.email,
            subject=email.subject,
            sent_at=receipt.accepted_at or datetime.now(timezone.utc),
            sent_by=sent_by,
            message_id=receipt.message_id,
        )
