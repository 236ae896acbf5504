"""
Checkout flow.

CheckoutStateMachine walks a cart through cart -> shipping -> billing ->
payment -> review. Every step has a rule function; a step whose rule
reports errors cannot be left forwards. A machine is built fresh for
each checkout attempt and discarded afterwards.

Completed checkouts are recorded in a CheckoutRepository owned by the
caller.
"""

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ..exceptions import CheckoutError
from ..models.cart import CartState
from ..models.checkout import (
    STEP_ORDER,
    Address,
    CheckoutConfirmation,
    CheckoutData,
    CheckoutState,
    CheckoutStep,
    CheckoutSummary,
    OrderStatus,
    PaymentDetails,
    PaymentMethodOption,
    PaymentType,
    ShippingMethod,
    StepId,
    StepValidation,
)
from .validator import CartValidator, Products

logger = logging.getLogger(__name__)

SHIPPING_METHODS = [
    ShippingMethod(
        id="standard",
        name="Standard Shipping",
        description="5-7 business days",
        cost=5.99,
        estimated_days="5-7",
    ),
    ShippingMethod(
        id="express",
        name="Express Shipping",
        description="2-3 business days",
        cost=12.99,
        estimated_days="2-3",
    ),
    ShippingMethod(
        id="overnight",
        name="Overnight Shipping",
        description="Next business day",
        cost=24.99,
        estimated_days="1",
    ),
]

PAYMENT_METHODS = [
    PaymentMethodOption(id="card", type=PaymentType.CARD, name="Credit/Debit Card",
                        description="Visa, Mastercard, American Express"),
    PaymentMethodOption(id="upi", type=PaymentType.UPI, name="UPI", description="Pay with UPI ID"),
    PaymentMethodOption(id="netbanking", type=PaymentType.NETBANKING, name="Net Banking",
                        description="Internet banking"),
    PaymentMethodOption(id="wallet", type=PaymentType.WALLET, name="Digital Wallet",
                        description="Paytm, PhonePe, Google Pay"),
    PaymentMethodOption(id="cod", type=PaymentType.COD, name="Cash on Delivery",
                        description="Pay when delivered", processing_fee=2.99),
]

TAX_RATES = {
    "CA": 0.0875,
    "NY": 0.08,
    "TX": 0.0625,
    "FL": 0.06,
}
DEFAULT_TAX_RATE = 0.08
DOMESTIC_COUNTRY = "US"
INTERNATIONAL_SURCHARGE = 15.99

STEP_DEFINITIONS = {
    StepId.CART: ("Review Cart", "Review your items and quantities"),
    StepId.SHIPPING: ("Shipping Information", "Enter your shipping address and choose delivery method"),
    StepId.BILLING: ("Billing Information", "Enter your billing address"),
    StepId.PAYMENT: ("Payment Method", "Choose your payment method"),
    StepId.REVIEW: ("Review & Confirm", "Review your order and confirm"),
}


class CheckoutRepository:
    """
    Append-only store of checkout confirmations.

    Records live in a list; a dict maps confirmation numbers to their
    position in it.
    """

    def __init__(self):
        self._records: list[CheckoutConfirmation] = []
        self._index: dict[str, int] = {}

    def add(self, confirmation: CheckoutConfirmation) -> CheckoutConfirmation:
        if confirmation.confirmation_number in self._index:
            raise CheckoutError(f"Duplicate confirmation number {confirmation.confirmation_number}")
        self._index[confirmation.confirmation_number] = len(self._records)
        self._records.append(confirmation)
        return confirmation

    def get(self, confirmation_number: str) -> Optional[CheckoutConfirmation]:
        position = self._index.get(confirmation_number)
        return self._records[position] if position is not None else None

    def list(self, user_id: Optional[str] = None) -> list[CheckoutConfirmation]:
        if user_id is None:
            return list(self._records)
        return [r for r in self._records if r.user_id == user_id]

    def __len__(self) -> int:
        return len(self._records)


class CheckoutStateMachine:
    """Linear, validation-gated checkout flow"""

    def __init__(
        self,
        cart: Optional[CartState] = None,
        products: Products = None,
        repository: Optional[CheckoutRepository] = None,
        user_id: Optional[str] = None,
        today: Callable[[], date] = date.today,
    ):
        self.repository = repository if repository is not None else CheckoutRepository()
        self.user_id = user_id
        self._products = products
        self._today = today
        self._rules: dict[StepId, Callable[[], StepValidation]] = {
            StepId.CART: self._validate_cart,
            StepId.SHIPPING: self._validate_shipping,
            StepId.BILLING: self._validate_billing,
            StepId.PAYMENT: self._validate_payment,
            StepId.REVIEW: self._validate_review,
        }
        self.reset()
        if cart is not None:
            self.set_cart_data(cart)

    def reset(self) -> None:
        """Back to the first step with empty data"""
        self.current_step_index = 0
        self._cart = CartState()
        self.checkout_data = CheckoutData()
        self.steps = [
            CheckoutStep(
                id=step_id,
                title=STEP_DEFINITIONS[step_id][0],
                description=STEP_DEFINITIONS[step_id][1],
                order=position + 1,
                is_active=position == 0,
            )
            for position, step_id in enumerate(STEP_ORDER)
        ]
        self._revalidate()

    # ==================== State ====================

    def get_current_step(self) -> CheckoutStep:
        return self.steps[self.current_step_index]

    @property
    def is_completed(self) -> bool:
        return all(step.is_completed for step in self.steps)

    def get_checkout_state(self) -> CheckoutState:
        completed = sum(1 for step in self.steps if step.is_completed)
        return CheckoutState(
            current_step=self.current_step_index,
            steps=[step.model_copy(deep=True) for step in self.steps],
            is_completed=completed == len(self.steps),
            can_proceed=self.get_current_step().validation.is_valid,
            has_errors=any(step.validation.errors for step in self.steps),
            progress=completed / len(self.steps) * 100,
        )

    # ==================== Navigation ====================

    def next_step(self) -> bool:
        """
        Complete the current step and advance.

        Returns False, leaving the current step in place, when its
        validation reports errors. On the last step a valid review is
        marked completed without moving.
        """
        current = self.get_current_step()
        current.validation = self._rules[current.id]()
        if not current.validation.is_valid:
            logger.debug(f"Cannot leave {current.id.value}: {current.validation.errors}")
            return False

        current.is_completed = True
        if self.current_step_index == len(self.steps) - 1:
            return True

        current.is_active = False
        self.current_step_index += 1
        self.get_current_step().is_active = True
        self.validate_current_step()
        return True

    def previous_step(self) -> bool:
        if self.current_step_index == 0:
            return False
        current = self.get_current_step()
        current.is_completed = False
        current.is_active = False
        self.current_step_index -= 1
        self.get_current_step().is_active = True
        self.validate_current_step()
        return True

    def go_to_step(self, index: int) -> bool:
        """Jump to a step; every step before it must already be completed"""
        if not 0 <= index < len(self.steps):
            return False
        if not all(step.is_completed for step in self.steps[:index]):
            return False
        for step in self.steps:
            step.is_active = False
        self.current_step_index = index
        self.steps[index].is_active = True
        self.validate_current_step()
        return True

    # ==================== Data ====================

    def update_checkout_data(self, section: str, **data: Any) -> None:
        """Merge fields into a data section and revalidate every step"""
        if self.checkout_data.order.status == OrderStatus.CONFIRMED:
            raise CheckoutError("Checkout already completed", step_id=section)
        current = getattr(self.checkout_data, section, None)
        if current is None:
            raise CheckoutError(f"Unknown checkout section: {section}", step_id=section)
        merged = current.model_validate({**current.model_dump(), **data})
        setattr(self.checkout_data, section, merged)
        self._refresh_shipping_cost()
        self._revalidate()

    def set_cart_data(self, cart: CartState) -> None:
        self._cart = cart.model_copy(deep=True)
        self.update_checkout_data(
            "cart",
            items=[i.model_dump() for i in cart.items],
            subtotal=cart.subtotal,
            discount=round(cart.coupon_discount + cart.gift_card_amount_applied, 2),
            total=cart.total,
        )

    def set_shipping_data(
        self,
        address: Optional[Address] = None,
        method: Optional[ShippingMethod] = None,
    ) -> None:
        data = {}
        if address is not None:
            data["address"] = address.model_dump()
        if method is not None:
            data["method"] = method.model_dump()
        self.update_checkout_data("shipping", **data)

    def set_billing_data(self, address: Optional[Address] = None, same_as_shipping: bool = True) -> None:
        self.update_checkout_data(
            "billing",
            address=address.model_dump() if address else None,
            same_as_shipping=same_as_shipping,
        )

    def set_payment_data(
        self,
        method: Optional[PaymentMethodOption] = None,
        details: Optional[PaymentDetails] = None,
    ) -> None:
        data = {}
        if method is not None:
            data["method"] = method.model_dump()
        if details is not None:
            data["details"] = details.model_dump()
        self.update_checkout_data("payment", **data)

    def select_shipping_method(self, method_id: str) -> ShippingMethod:
        method = next((m for m in self.get_available_shipping_methods() if m.id == method_id), None)
        if method is None:
            raise CheckoutError(f"Unknown shipping method: {method_id}", step_id=StepId.SHIPPING.value)
        self.set_shipping_data(method=method)
        return method

    def select_payment_method(self, method_id: str) -> PaymentMethodOption:
        method = next((m for m in self.get_available_payment_methods() if m.id == method_id), None)
        if method is None:
            raise CheckoutError(f"Unknown payment method: {method_id}", step_id=StepId.PAYMENT.value)
        self.set_payment_data(method=method)
        return method

    # ==================== Validation ====================

    def validate_current_step(self) -> StepValidation:
        current = self.get_current_step()
        current.validation = self._rules[current.id]()
        return current.validation

    def _revalidate(self) -> None:
        for step in self.steps:
            step.validation = self._rules[step.id]()
            # A completed step whose data became invalid must be redone
            if step.is_completed and not step.validation.is_valid:
                step.is_completed = False

    @staticmethod
    def _result(errors: list[str], warnings: list[str], required: list[str]) -> StepValidation:
        return StepValidation(is_valid=not errors, errors=errors, warnings=warnings, required=required)

    def _validate_cart(self) -> StepValidation:
        result = CartValidator.validate_for_checkout(self._cart, self._products)
        return self._result(
            [issue.message for issue in result.errors],
            [issue.message for issue in result.warnings],
            ["items"],
        )

    def _validate_shipping(self) -> StepValidation:
        shipping = self.checkout_data.shipping
        errors = []
        if shipping.address is None:
            errors.append("Shipping address is required")
        if shipping.method is None:
            errors.append("Shipping method is required")
        elif not shipping.method.is_available:
            errors.append(f"{shipping.method.name} is not available")
        return self._result(errors, [], ["address", "method"])

    def _validate_billing(self) -> StepValidation:
        billing = self.checkout_data.billing
        errors = []
        if billing.same_as_shipping:
            if self.checkout_data.shipping.address is None:
                errors.append("Billing address is required")
        elif billing.address is None:
            errors.append("Billing address is required")
        return self._result(errors, [], ["address"])

    def _validate_payment(self) -> StepValidation:
        payment = self.checkout_data.payment
        errors = []
        if payment.method is None:
            errors.append("Payment method is required")
        if payment.details is None:
            errors.append("Payment details are required")
        elif payment.method is not None:
            details = payment.details
            if details.method != payment.method.type:
                errors.append("Payment details do not match the selected method")
            elif details.method == PaymentType.CARD and details.card is None:
                errors.append("Card details are required")
            elif details.method == PaymentType.UPI and not details.upi_id:
                errors.append("UPI ID is required")
        return self._result(errors, [], ["method", "details"])

    def _validate_review(self) -> StepValidation:
        errors = []
        for step_id in STEP_ORDER[:-1]:
            errors.extend(self._rules[step_id]().errors)
        return self._result(errors, [], ["order"])

    # ==================== Pricing ====================

    @staticmethod
    def get_available_shipping_methods() -> list[ShippingMethod]:
        return [m.model_copy() for m in SHIPPING_METHODS]

    @staticmethod
    def get_available_payment_methods() -> list[PaymentMethodOption]:
        return [m.model_copy() for m in PAYMENT_METHODS]

    @staticmethod
    def calculate_shipping_cost(method: ShippingMethod, address: Address) -> float:
        cost = method.cost
        if address.country.upper() != DOMESTIC_COUNTRY:
            cost += INTERNATIONAL_SURCHARGE
        return round(cost, 2)

    @staticmethod
    def calculate_tax(amount: float, address: Optional[Address]) -> float:
        rate = TAX_RATES.get(address.state.upper(), DEFAULT_TAX_RATE) if address else DEFAULT_TAX_RATE
        return round(amount * rate, 2)

    def _refresh_shipping_cost(self) -> None:
        shipping = self.checkout_data.shipping
        if shipping.method and shipping.address:
            shipping.cost = self.calculate_shipping_cost(shipping.method, shipping.address)
        else:
            shipping.cost = 0.0

    def calculate_total(self) -> float:
        return self.get_checkout_summary().total

    def get_checkout_summary(self) -> CheckoutSummary:
        cart = self.checkout_data.cart
        shipping = self.checkout_data.shipping
        payment = self.checkout_data.payment
        taxable = max(0.0, cart.subtotal - cart.discount)
        tax = self.calculate_tax(taxable, shipping.address)
        fee = payment.method.processing_fee if payment.method else 0.0
        return CheckoutSummary(
            items=sum(i.quantity for i in cart.items),
            subtotal=round(cart.subtotal, 2),
            shipping=shipping.cost,
            tax=tax,
            discount=cart.discount,
            processing_fee=fee,
            total=round(taxable + shipping.cost + tax + fee, 2),
            estimated_delivery=self._estimated_delivery(),
        )

    def _estimated_delivery(self) -> Optional[date]:
        method = self.checkout_data.shipping.method
        if method is None:
            return None
        return self._today() + timedelta(days=method.min_days)

    # ==================== Completion ====================

    def complete_checkout(self) -> Optional[CheckoutConfirmation]:
        """
        Stamp a confirmation once every step is completed.

        Returns None if any step is still incomplete.
        """
        if not self.is_completed:
            pending = [step.id.value for step in self.steps if not step.is_completed]
            logger.warning(f"Checkout cannot complete, unfinished steps: {pending}")
            return None
        if self.checkout_data.order.status == OrderStatus.CONFIRMED:
            return self.repository.get(self.checkout_data.order.confirmation_number)

        summary = self.get_checkout_summary()
        order = self.checkout_data.order
        order.status = OrderStatus.CONFIRMED
        order.confirmation_number = f"ORD-{uuid.uuid4().hex[:8].upper()}"
        order.estimated_delivery = summary.estimated_delivery

        confirmation = CheckoutConfirmation(
            confirmation_number=order.confirmation_number,
            user_id=self.user_id,
            total=summary.total,
            items=[i.model_copy() for i in self.checkout_data.cart.items],
            shipping_method=self.checkout_data.shipping.method.id,
            estimated_delivery=order.estimated_delivery,
            created_at=datetime.now(timezone.utc),
        )
        self.repository.add(confirmation)
        logger.info(f"Checkout confirmed: {confirmation.confirmation_number} ({summary.total:.2f})")
        return confirmation
