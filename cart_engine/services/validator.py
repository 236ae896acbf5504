"""
Cart validation.

Stateless rule evaluation over a cart snapshot plus live product data.
Nothing here raises; every finding is reported as an error (blocks
checkout) or a warning (informational).
"""

from typing import Iterable, Mapping, Optional, Union

from ..models.cart import CartItem, CartState
from ..models.product import Product
from ..models.validation import (
    CartValidationResult,
    IssueType,
    PriceValidation,
    ProductValidation,
    StockValidation,
    ValidationIssue,
    ValidationSummary,
)
from .cart_model import COUPON_RULES, normalize_code

Products = Union[Mapping[str, Product], Iterable[Product], None]

CRITICAL_TYPES = {IssueType.STOCK, IssueType.PRODUCT, IssueType.QUANTITY, IssueType.AVAILABILITY}


def _index_products(products: Products) -> Optional[dict[str, Product]]:
    if products is None:
        return None
    if isinstance(products, Mapping):
        return dict(products)
    return {p.id: p for p in products}


class CartValidator:
    """Cart and checkout validation rules"""

    MAX_QUANTITY_PER_ITEM = 99
    MAX_DISTINCT_ITEMS = 50
    MIN_ORDER_VALUE = 0
    MAX_ORDER_VALUE = 10000
    MIN_COUPON_LENGTH = 3
    MIN_GIFT_CARD_LENGTH = 8
    EXPIRED_COUPONS = frozenset({"EXPIRED123", "OLDCOUPON"})
    INVALID_GIFT_CARDS = frozenset({"INVALID123", "EXPIRED456"})

    @classmethod
    def validate(cls, cart: CartState, products: Products = None) -> CartValidationResult:
        """Alias for validate_cart"""
        return cls.validate_cart(cart, products)

    @classmethod
    def validate_cart(cls, cart: CartState, products: Products = None) -> CartValidationResult:
        """
        Validate the whole cart.

        When products is None, product-dependent checks (stock, price
        drift, product status) are skipped. When a catalog is supplied,
        an item missing from it is reported as a product error.
        """
        catalog = _index_products(products)
        result = CartValidationResult()

        for item in cart.items:
            if catalog is None:
                result = result.merge(cls.validate_cart_item(item))
            elif item.id not in catalog:
                result.errors.append(
                    ValidationIssue(
                        type=IssueType.PRODUCT,
                        message="Product no longer exists",
                        item_id=item.id,
                    )
                )
                result.errors.extend(cls.validate_quantity(item))
            else:
                result = result.merge(cls.validate_cart_item(item, catalog[item.id]))

        result.errors.extend(cls.validate_cart_totals(cart))

        if cart.coupon_code:
            coupon = cls.validate_coupon(cart.coupon_code, cart.subtotal)
            result = result.merge(coupon)

        if cart.gift_card_code:
            result.errors.extend(cls.validate_gift_card(cart.gift_card_code))

        return result

    @classmethod
    def validate_cart_item(cls, item: CartItem, product: Optional[Product] = None) -> CartValidationResult:
        """Validate one line item"""
        result = CartValidationResult()
        result.errors.extend(cls.validate_quantity(item))

        if product is None:
            return result

        status = cls.validate_product(item, product)
        if not status.active:
            result.errors.append(
                ValidationIssue(type=IssueType.PRODUCT, message="Product is no longer active", item_id=item.id)
            )
            return result
        if not status.available:
            result.errors.append(
                ValidationIssue(
                    type=IssueType.AVAILABILITY,
                    message="Product is currently unavailable",
                    item_id=item.id,
                )
            )
        if status.discontinued:
            result.warnings.append(
                ValidationIssue(type=IssueType.PRODUCT, message="Product has been discontinued", item_id=item.id)
            )

        stock = cls.validate_stock(item, product)
        if not stock.available:
            result.errors.append(
                ValidationIssue(
                    type=IssueType.STOCK,
                    message=stock.message or "Item out of stock",
                    item_id=item.id,
                    value=product.available_stock,
                )
            )

        price = cls.validate_price(item, product)
        if price.has_changed:
            result.warnings.append(
                ValidationIssue(
                    type=IssueType.PRICE,
                    message=f"Price has changed from ${item.price:.2f} to ${price.current_price:.2f}",
                    item_id=item.id,
                    field="price",
                    value=price.current_price,
                )
            )

        return result

    @staticmethod
    def validate_stock(item: CartItem, product: Optional[Product]) -> StockValidation:
        if product is None:
            return StockValidation(available=False, stock=0, reserved=0, message="Product not found")

        available_stock = product.available_stock
        is_available = available_stock >= item.quantity
        return StockValidation(
            available=is_available,
            stock=product.stock,
            reserved=product.reserved,
            message=None if is_available else f"Only {max(0, available_stock)} items available",
        )

    @classmethod
    def validate_quantity(cls, item: CartItem) -> list[ValidationIssue]:
        errors = []
        if item.quantity <= 0:
            errors.append(
                ValidationIssue(
                    type=IssueType.QUANTITY,
                    message="Quantity must be greater than 0",
                    item_id=item.id,
                    field="quantity",
                    value=item.quantity,
                )
            )
        if item.quantity > cls.MAX_QUANTITY_PER_ITEM:
            errors.append(
                ValidationIssue(
                    type=IssueType.QUANTITY,
                    message=f"Maximum {cls.MAX_QUANTITY_PER_ITEM} items per product",
                    item_id=item.id,
                    field="quantity",
                    value=item.quantity,
                )
            )
        return errors

    @staticmethod
    def validate_price(item: CartItem, product: Product) -> PriceValidation:
        has_changed = round(item.price, 2) != round(product.price, 2)
        difference = product.price - item.price if has_changed else 0
        return PriceValidation(
            current_price=product.price,
            cart_price=item.price,
            has_changed=has_changed,
            discount=difference if difference > 0 else None,
        )

    @staticmethod
    def validate_product(item: CartItem, product: Optional[Product]) -> ProductValidation:
        return ProductValidation(
            exists=product is not None,
            active=bool(product and product.active),
            available=bool(product and product.available),
            discontinued=bool(product and product.discontinued),
        )

    @classmethod
    def validate_cart_totals(cls, cart: CartState) -> list[ValidationIssue]:
        errors = []
        if cart.subtotal < cls.MIN_ORDER_VALUE:
            errors.append(
                ValidationIssue(
                    type=IssueType.QUANTITY,
                    message=f"Minimum order value is ${cls.MIN_ORDER_VALUE}",
                    field="subtotal",
                    value=cart.subtotal,
                )
            )
        if cart.subtotal > cls.MAX_ORDER_VALUE:
            errors.append(
                ValidationIssue(
                    type=IssueType.QUANTITY,
                    message=f"Maximum order value is ${cls.MAX_ORDER_VALUE}",
                    field="subtotal",
                    value=cart.subtotal,
                )
            )
        if len(cart.items) > cls.MAX_DISTINCT_ITEMS:
            errors.append(
                ValidationIssue(
                    type=IssueType.QUANTITY,
                    message=f"Maximum {cls.MAX_DISTINCT_ITEMS} different items in cart",
                    field="items",
                    value=len(cart.items),
                )
            )
        return errors

    @classmethod
    def validate_coupon(cls, code: str, subtotal: float) -> CartValidationResult:
        """Format and expiry-list checks; an unmet threshold is only a warning"""
        result = CartValidationResult()
        normalized = normalize_code(code)

        if not normalized:
            result.errors.append(
                ValidationIssue(type=IssueType.COUPON, message="Coupon code is required", field="coupon_code", value=code)
            )
            return result

        if len(normalized) < cls.MIN_COUPON_LENGTH:
            result.errors.append(
                ValidationIssue(
                    type=IssueType.COUPON,
                    message=f"Coupon code must be at least {cls.MIN_COUPON_LENGTH} characters",
                    field="coupon_code",
                    value=code,
                )
            )

        if normalized in cls.EXPIRED_COUPONS:
            result.errors.append(
                ValidationIssue(type=IssueType.COUPON, message="Coupon code has expired", field="coupon_code", value=code)
            )

        rule = COUPON_RULES.get(normalized)
        if rule and subtotal < rule.min_subtotal:
            result.warnings.append(
                ValidationIssue(
                    type=IssueType.COUPON,
                    message=f"Minimum order value of ${rule.min_subtotal:.0f} required for this coupon",
                    field="coupon_code",
                    value=code,
                )
            )

        return result

    @classmethod
    def validate_gift_card(cls, code: str) -> list[ValidationIssue]:
        errors = []
        normalized = normalize_code(code)

        if not normalized:
            return [
                ValidationIssue(
                    type=IssueType.GIFT_CARD,
                    message="Gift card code is required",
                    field="gift_card_code",
                    value=code,
                )
            ]

        if len(normalized) < cls.MIN_GIFT_CARD_LENGTH:
            errors.append(
                ValidationIssue(
                    type=IssueType.GIFT_CARD,
                    message=f"Gift card code must be at least {cls.MIN_GIFT_CARD_LENGTH} characters",
                    field="gift_card_code",
                    value=code,
                )
            )
        if normalized in cls.INVALID_GIFT_CARDS:
            errors.append(
                ValidationIssue(
                    type=IssueType.GIFT_CARD,
                    message="Invalid gift card code",
                    field="gift_card_code",
                    value=code,
                )
            )
        return errors

    @classmethod
    def validate_for_checkout(cls, cart: CartState, products: Products = None) -> CartValidationResult:
        """validate_cart plus the requirements for starting checkout"""
        result = cls.validate_cart(cart, products)

        if not cart.items:
            result.errors.append(
                ValidationIssue(
                    type=IssueType.QUANTITY,
                    message="Cart must contain at least one item",
                    field="items",
                )
            )
        if cart.subtotal <= 0:
            result.errors.append(
                ValidationIssue(
                    type=IssueType.PRICE,
                    message="Cart total must be greater than $0",
                    field="subtotal",
                    value=cart.subtotal,
                )
            )
        return result

    @staticmethod
    def get_validation_summary(result: CartValidationResult) -> ValidationSummary:
        critical = sum(1 for e in result.errors if e.type in CRITICAL_TYPES)

        if result.total_errors == 0 and result.total_warnings == 0:
            summary = "Cart is valid and ready for checkout"
        elif result.total_errors == 0:
            summary = f"Cart is valid with {result.total_warnings} warning(s)"
        else:
            summary = f"Cart has {result.total_errors} error(s) and {result.total_warnings} warning(s)"

        return ValidationSummary(
            can_proceed=result.is_valid,
            critical_issues=critical,
            warnings=result.total_warnings,
            summary=summary,
        )
