import logging

from django.db import transaction

from trading.models import PriceAdjustment, Product

logger = logging.getLogger(__name__)


@transaction.atomic
def adjust_selling_price(product_id, new_price, user):
    """
    Record a selling price change and apply it to the product. The product
    row is locked so the logged old price is the one actually replaced.
    Raises ``Product.DoesNotExist`` for an unknown product.
    """
    product = Product.objects.select_for_update().get(pk=product_id)
    adjustment = PriceAdjustment.objects.create(
        product=product,
        old_price=product.selling_price,
        new_price=new_price,
        user=user,
    )
    product.selling_price = new_price
    product.save(update_fields=["selling_price", "updated_at"])
    logger.info("Selling price of %s changed %s -> %s", product.code, adjustment.old_price, new_price)
    return product, adjustment
