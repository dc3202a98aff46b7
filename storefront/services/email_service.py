import logging
from fastapi_mail import MessageSchema, MessageType
from typing import Dict, Any

from ..core.config import Config
from ..mails.send_mail import mail
from ..models import Order, Review


logger = logging.getLogger(__name__)


class EmailService:

    async def send_template_email(
        self,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any]
    ) -> bool:
        """
        Sends an email using a template with provided context.

        Args:
            to_email (str): Recipient email address
            subject (str): Email subject
            template_name (str): Name of the template file (e.g., "order-confirmation.html")
            context (Dict[str, Any]): Context variables for the template

        Returns:
            bool: True if email was sent successfully, False otherwise
        """
        try:
            message = MessageSchema(
                subject=subject,
                recipients=[to_email],
                template_body=context,
                subtype=MessageType.html,
            )

            await mail.send_message(message, template_name=template_name)
            return True

        except Exception:
            # notification failures never reach the caller
            logger.exception("Failed to send %s to %s", template_name, to_email)
            return False

    async def send_order_confirmation(self, order: Order) -> bool:
        """
        Sends an order confirmation email.

        Args:
            order (Order): The placed order, with its items loaded

        Returns:
            bool: True if email was sent successfully, False otherwise
        """
        context = {
            "customer_name": order.guest_name,
            "order_number": order.order_number,
            "order_date": order.order_date.strftime("%b %d, %Y"),
            "items": [
                {
                    "product_name": item.product_name,
                    "selected_color": item.selected_color,
                    "quantity": item.quantity,
                    "unit_price": str(item.unit_price),
                    "line_total": str(item.line_total),
                }
                for item in order.items
            ],
            "currency": Config.CURRENCY,
            "subtotal": str(order.subtotal),
            "discount_code": order.discount_code,
            "discount_amount": str(order.discount_amount),
            "shipping_city": order.shipping_city_name,
            "shipping_cost": str(order.shipping_cost),
            "grand_total": str(order.total_amount),
            "payment_method": order.payment_method.value.replace("_", " ").title(),
        }
        return await self.send_template_email(
            order.guest_email,
            f"Order Confirmation - {order.order_number}",
            "order-confirmation.html",
            context,
        )

    async def send_order_shipped(self, order: Order) -> bool:
        context = {
            "customer_name": order.guest_name,
            "order_number": order.order_number,
            "shipped_date": (order.shipped_date or order.updated_at).strftime("%b %d, %Y"),
            "shipping_address": order.shipping_address,
            "shipping_city": order.shipping_city_name,
            "currency": Config.CURRENCY,
            "grand_total": str(order.total_amount),
        }
        return await self.send_template_email(
            order.guest_email,
            f"Your order {order.order_number} has shipped",
            "order-shipped.html",
            context,
        )

    async def send_review_approved(self, review: Review, product_name: str) -> bool:
        context = {
            "guest_name": review.guest_name,
            "product_name": product_name,
            "rating": review.rating,
        }
        return await self.send_template_email(
            review.guest_email,
            "Your review has been published",
            "review-approved.html",
            context,
        )
