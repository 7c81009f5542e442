"""Cart management: creation, lookup and guest-cart merging on login."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.cart.cart import ALIVE_STATUSES, Cart
from storefront.cart.pricing import reprice
from storefront.domain import storefront
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@storefront.command(part_of="Cart")
class CreateCart:
    """Return the buyer's alive cart, creating one when there is none."""

    owner_id = Identifier()  # Optional for guest carts
    browser_guid = String(max_length=255)
    email = String(max_length=255)
    currency = String(max_length=3)


@storefront.command(part_of="Cart")
class MergeGuestCart:
    """Attach the browser's guest cart to the buyer who just logged in."""

    owner_id = Identifier(required=True)
    browser_guid = String(required=True, max_length=255)
    email = String(max_length=255)


def _alive(carts):
    carts = [cart for cart in carts if cart.status in ALIVE_STATUSES]
    return max(carts, key=lambda cart: cart.created_at) if carts else None


def alive_cart_for_owner(owner_id) -> Cart | None:
    repo = current_domain.repository_for(Cart)
    return _alive(repo._dao.query.filter(owner_id=str(owner_id)).all().items)


def alive_cart_for_browser(browser_guid) -> Cart | None:
    """The browser's guest cart. Carts owned by a buyer are never returned."""
    repo = current_domain.repository_for(Cart)
    carts = repo._dao.query.filter(browser_guid=browser_guid).all().items
    return _alive([cart for cart in carts if not cart.owner_id])


@storefront.command_handler(part_of=Cart)
class ManageCartHandler:
    @handle(CreateCart)
    def create_cart(self, command):
        if not command.owner_id and not command.browser_guid:
            raise ValidationError({"cart": ["Either owner_id or browser_guid is required"]})

        if command.owner_id:
            existing = alive_cart_for_owner(command.owner_id)
        else:
            existing = alive_cart_for_browser(command.browser_guid)
        if existing is not None:
            return str(existing.id)

        cart = Cart.create(
            owner_id=command.owner_id,
            browser_guid=command.browser_guid,
            email=command.email,
            currency=command.currency,
        )
        current_domain.repository_for(Cart).add(cart)
        return str(cart.id)

    @handle(MergeGuestCart)
    def merge_guest_cart(self, command):
        repo = current_domain.repository_for(Cart)
        guest_cart = alive_cart_for_browser(command.browser_guid)
        user_cart = alive_cart_for_owner(command.owner_id)

        if guest_cart is None:
            if user_cart is not None:
                return str(user_cart.id)
            cart = Cart.create(owner_id=command.owner_id, browser_guid=command.browser_guid, email=command.email)
            repo.add(cart)
            return str(cart.id)

        if user_cart is None:
            guest_cart.assign_owner(command.owner_id, email=command.email)
            repo.add(guest_cart)
            logger.info("guest_cart_assigned", cart_id=str(guest_cart.id), owner_id=str(command.owner_id))
            return str(guest_cart.id)

        user_cart.merge_from(guest_cart)
        reprice(user_cart)
        # Both writes commit in the handler's unit of work
        repo.add(guest_cart)
        repo.add(user_cart)
        logger.info("guest_cart_merged", cart_id=str(user_cart.id), guest_cart_id=str(guest_cart.id))
        return str(user_cart.id)
