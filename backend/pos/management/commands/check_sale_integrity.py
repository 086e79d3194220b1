"""
Management command to find sales left inconsistent by a failed non-atomic checkout.
"""
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db.models import Count, DecimalField, ExpressionWrapper, F, Sum

from backend.core.models import AuditLog
from backend.pos.models import Sale


class Command(BaseCommand):
    help = "Report sales without line items, sales whose total differs from their items and checkouts that failed part way"

    def add_arguments(self, parser):
        parser.add_argument(
            '--verbose',
            action='store_true',
            help='Show each inconsistent sale',
        )

    def handle(self, *args, **options):
        verbose = options['verbose']
        self.stdout.write(self.style.SUCCESS('Checking sale data sanity...\n'))

        issues_found = 0

        # Check 1: sales without any items
        self.stdout.write('1. Checking for sales without line items...')
        empty_sales = Sale.objects.annotate(item_count=Count('items')).filter(item_count=0)
        if empty_sales.exists():
            issues_found += empty_sales.count()
            self.stdout.write(self.style.WARNING(f'   Found {empty_sales.count()} sales without line items'))
            if verbose:
                for sale in empty_sales[:50]:
                    self.stdout.write(f'   - Sale {sale.pk}: total={sale.total}, created_at={sale.created_at:%Y-%m-%d %H:%M}')
        else:
            self.stdout.write(self.style.SUCCESS('   ✓ No issues found'))

        # Check 2: sales whose items do not add up to the recorded total
        self.stdout.write('\n2. Checking for sales whose total differs from their items...')
        line_total = ExpressionWrapper(F('items__price') * F('items__quantity'), output_field=DecimalField(max_digits=14, decimal_places=2))
        mismatched = []
        for sale in Sale.objects.annotate(item_count=Count('items'), items_sum=Sum(line_total)).filter(item_count__gt=0):
            items_sum = Decimal(sale.items_sum or 0).quantize(Decimal('0.01'))
            if items_sum != sale.total:
                mismatched.append((sale, items_sum))

        if mismatched:
            issues_found += len(mismatched)
            self.stdout.write(self.style.WARNING(f'   Found {len(mismatched)} sales whose total differs from their items'))
            if verbose:
                for sale, items_sum in mismatched[:50]:
                    self.stdout.write(f'   - Sale {sale.pk}: total={sale.total}, items={items_sum}')
        else:
            self.stdout.write(self.style.SUCCESS('   ✓ No issues found'))

        # Check 3: checkouts that failed after writing, e.g. a stock decrement
        # that failed once the sale and its items were saved
        self.stdout.write('\n3. Checking for checkouts recorded as failed...')
        failed = AuditLog.objects.filter(action='sale_failed').order_by('-created_at')
        if failed.exists():
            issues_found += failed.count()
            self.stdout.write(self.style.WARNING(f'   Found {failed.count()} failed checkouts that left a partial sale'))
            if verbose:
                existing = set(
                    str(pk) for pk in Sale.objects.filter(
                        pk__in=[entry.object_id for entry in failed[:50]]
                    ).values_list('pk', flat=True)
                )
                for entry in failed[:50]:
                    state = entry.changes.get('state', 'unknown')
                    present = 'present' if entry.object_id in existing else 'missing'
                    self.stdout.write(
                        f'   - Sale {entry.object_id} ({present}): failed while {state} '
                        f'at {entry.created_at:%Y-%m-%d %H:%M}: {entry.changes.get("message", "")}'
                    )
        else:
            self.stdout.write(self.style.SUCCESS('   ✓ No issues found'))

        self.stdout.write('')
        if issues_found:
            self.stdout.write(self.style.WARNING(f'{issues_found} inconsistent sales need manual reconciliation'))
        else:
            self.stdout.write(self.style.SUCCESS('All sales are consistent'))
