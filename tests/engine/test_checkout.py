"""CheckoutStateMachine tests"""

from datetime import date

import pytest

from cart_engine.exceptions import CheckoutError
from cart_engine.models.cart import CartState
from cart_engine.models.checkout import (
    Address,
    CardDetails,
    OrderStatus,
    PaymentDetails,
    PaymentType,
    StepId,
)
from cart_engine.services.cart_model import CartModel
from cart_engine.services.checkout import CheckoutRepository, CheckoutStateMachine

TODAY = date(2026, 3, 2)


def make_address(**overrides) -> Address:
    fields = dict(
        name="Jane Doe",
        street="1 Market St",
        city="San Francisco",
        state="CA",
        postal_code="94105",
    )
    fields.update(overrides)
    return Address(**fields)


def card_details() -> PaymentDetails:
    return PaymentDetails(
        method=PaymentType.CARD,
        card=CardDetails(number="4111111111111111", expiry_month=12, expiry_year=2030, cvv="123", name="Jane Doe"),
    )


@pytest.fixture
def cart() -> CartState:
    model = CartModel()
    model.add_item("p1", "Headphones", 50.0, quantity=2)
    return model.snapshot()


@pytest.fixture
def repository():
    return CheckoutRepository()


@pytest.fixture
def machine(cart, repository):
    return CheckoutStateMachine(cart, repository=repository, user_id="demo-user", today=lambda: TODAY)


def fill_to_review(machine: CheckoutStateMachine, payment: str = "card", details: PaymentDetails = None):
    assert machine.next_step()
    machine.set_shipping_data(address=make_address())
    machine.select_shipping_method("standard")
    assert machine.next_step()
    assert machine.next_step()
    machine.select_payment_method(payment)
    machine.set_payment_data(details=details or card_details())
    assert machine.next_step()
    assert machine.get_current_step().id == StepId.REVIEW


class TestNavigation:
    """Step gating"""

    def test_starts_on_cart(self, machine):
        state = machine.get_checkout_state()
        assert state.current_step == 0
        assert state.can_proceed
        assert state.progress == 0

    def test_empty_cart_cannot_proceed(self):
        machine = CheckoutStateMachine(CartState())

        assert not machine.next_step()
        assert machine.get_current_step().id == StepId.CART
        assert "Cart must contain at least one item" in machine.get_current_step().validation.errors

    def test_shipping_requires_address_and_method(self, machine):
        assert machine.next_step()

        assert not machine.next_step()
        step = machine.get_current_step()
        assert step.id == StepId.SHIPPING
        assert step.validation.errors == ["Shipping address is required", "Shipping method is required"]

        machine.set_shipping_data(address=make_address())
        assert not machine.next_step()

        machine.select_shipping_method("express")
        assert machine.next_step()
        assert machine.get_current_step().id == StepId.BILLING

    def test_separate_billing_address_required(self, machine):
        machine.next_step()
        machine.set_shipping_data(address=make_address(), method=machine.select_shipping_method("standard"))
        machine.next_step()

        machine.set_billing_data(same_as_shipping=False)
        assert not machine.next_step()
        assert machine.get_current_step().validation.errors == ["Billing address is required"]

        machine.set_billing_data(address=make_address(street="9 Elm St"), same_as_shipping=False)
        assert machine.next_step()

    def test_payment_details_must_match_method(self, machine):
        machine.next_step()
        machine.set_shipping_data(address=make_address())
        machine.select_shipping_method("standard")
        machine.next_step()
        machine.next_step()

        machine.select_payment_method("upi")
        machine.set_payment_data(details=card_details())
        assert not machine.next_step()
        assert "Payment details do not match the selected method" in machine.get_current_step().validation.errors

        machine.set_payment_data(details=PaymentDetails(method=PaymentType.UPI))
        assert not machine.next_step()
        assert machine.get_current_step().validation.errors == ["UPI ID is required"]

        machine.set_payment_data(details=PaymentDetails(method=PaymentType.UPI, upi_id="jane@bank"))
        assert machine.next_step()

    def test_cannot_skip_ahead(self, machine):
        assert not machine.go_to_step(3)
        assert machine.next_step()
        assert machine.go_to_step(0)
        assert machine.go_to_step(1)
        assert not machine.go_to_step(2)
        assert not machine.go_to_step(7)

    def test_previous_step(self, machine):
        assert not machine.previous_step()
        machine.next_step()
        assert machine.previous_step()
        assert machine.get_current_step().id == StepId.CART
        assert machine.get_current_step().is_active

    def test_invalidated_step_is_uncompleted(self, machine):
        fill_to_review(machine)
        assert machine.steps[1].is_completed

        machine.update_checkout_data("shipping", address=None)

        assert not machine.steps[1].is_completed
        assert not machine.get_current_step().validation.is_valid
        assert not machine.go_to_step(3)
        assert machine.complete_checkout() is None

    def test_unknown_selection_raises(self, machine):
        with pytest.raises(CheckoutError):
            machine.select_shipping_method("teleport")
        with pytest.raises(CheckoutError):
            machine.select_payment_method("barter")
        with pytest.raises(CheckoutError):
            machine.update_checkout_data("gifts", wrap=True)


class TestPricing:
    """Shipping, tax and fees"""

    def test_tax_rates(self):
        assert CheckoutStateMachine.calculate_tax(100, make_address(state="TX")) == 6.25
        assert CheckoutStateMachine.calculate_tax(100, make_address(state="WA")) == 8.0
        assert CheckoutStateMachine.calculate_tax(100, None) == 8.0

    def test_international_surcharge(self, machine):
        method = machine.select_shipping_method("standard")
        abroad = make_address(country="CA", state="ON")

        assert CheckoutStateMachine.calculate_shipping_cost(method, abroad) == 21.98
        machine.set_shipping_data(address=abroad)
        assert machine.checkout_data.shipping.cost == 21.98

    def test_summary_with_discount_and_fee(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 50.0, quantity=3)
        model.apply_coupon("FESTIVE20")
        machine = CheckoutStateMachine(model.snapshot(), today=lambda: TODAY)

        machine.set_shipping_data(address=make_address(), method=machine.select_shipping_method("overnight"))
        machine.select_payment_method("cod")

        summary = machine.get_checkout_summary()
        assert summary.items == 3
        assert summary.subtotal == 150
        assert summary.discount == 30
        assert summary.tax == 10.5
        assert summary.shipping == 24.99
        assert summary.processing_fee == 2.99
        assert summary.total == 158.48
        assert summary.estimated_delivery == date(2026, 3, 3)


class TestCompletion:
    def test_full_flow(self, machine, repository):
        fill_to_review(machine)

        assert machine.next_step()
        assert machine.is_completed
        assert machine.get_checkout_state().progress == 100

        confirmation = machine.complete_checkout()

        assert confirmation.confirmation_number.startswith("ORD-")
        assert len(confirmation.confirmation_number) == 12
        assert confirmation.total == 114.74
        assert confirmation.estimated_delivery == date(2026, 3, 7)
        assert confirmation.shipping_method == "standard"
        assert machine.checkout_data.order.status == OrderStatus.CONFIRMED
        assert repository.get(confirmation.confirmation_number) == confirmation
        assert repository.list("demo-user") == [confirmation]

    def test_completing_twice_returns_same_confirmation(self, machine, repository):
        fill_to_review(machine)
        machine.next_step()

        first = machine.complete_checkout()
        assert machine.complete_checkout() == first
        assert len(repository) == 1

    def test_incomplete_checkout_returns_none(self, machine, repository):
        fill_to_review(machine)

        assert machine.complete_checkout() is None
        assert len(repository) == 0

    def test_data_is_frozen_after_completion(self, machine):
        fill_to_review(machine)
        machine.next_step()
        machine.complete_checkout()

        with pytest.raises(CheckoutError):
            machine.set_shipping_data(address=make_address(city="Oakland"))

    def test_reset(self, machine):
        fill_to_review(machine)
        machine.reset()

        assert machine.current_step_index == 0
        assert not any(step.is_completed for step in machine.steps)
        assert machine.checkout_data.shipping.address is None
