from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.db.models import DecimalField, OuterRef, Subquery, Sum, Value
from django.db.models.functions import Coalesce

from trading.models import Customer, SalesOrder


def _order_sum():
    """Per-customer sum of sales order totals, as a correlated subquery."""
    per_customer = (
        SalesOrder.objects.filter(customer=OuterRef("pk"))
        .values("customer")
        .annotate(s=Sum("total_amount"))
        .values("s")
    )
    return Coalesce(
        Subquery(per_customer),
        Value(Decimal("0.00")),
        output_field=DecimalField(max_digits=14, decimal_places=2),
    )


class Command(BaseCommand):
    help = "Compares each customer's lifetime purchases with the sum of their sales orders"

    def add_arguments(self, parser):
        parser.add_argument("--fix", action="store_true", help="Overwrite drifted totals with the order sum.")
        parser.add_argument("--batch-size", type=int, default=500)

    def handle(self, *args, **options):
        self.stdout.write("Summing sales orders per customer...")
        drifted = []
        for customer in Customer.objects.annotate(order_sum=_order_sum()).order_by("id"):
            if customer.total_purchase != customer.order_sum:
                self.stdout.write(
                    f"  {customer.code} {customer.name}: recorded {customer.total_purchase}, orders {customer.order_sum}"
                )
                drifted.append(customer.pk)

        if not drifted:
            self.stdout.write(self.style.SUCCESS("All customer totals match their orders."))
            return

        if not options["fix"]:
            self.stdout.write(self.style.WARNING(f"{len(drifted)} customers drifted. Re-run with --fix to update."))
            return

        # The sum is recomputed inside the UPDATE itself, so a sale committed
        # after the report above is still counted.
        batch_size = options["batch_size"]
        with transaction.atomic():
            for i in range(0, len(drifted), batch_size):
                batch = drifted[i:i + batch_size]
                Customer.objects.filter(pk__in=batch).update(total_purchase=_order_sum())
                self.stdout.write(f"Updated {min(i + batch_size, len(drifted))}/{len(drifted)}")

        self.stdout.write(self.style.SUCCESS(f"Fixed total_purchase for {len(drifted)} customers."))
