# Overview: Flask CLI command group for bootstrap, inspection, and maintenance.

# backend/stockroom/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask stock <command> [options]
#
# - python -m flask stock init-db [--reset --yes]
#   Create all tables (optionally drop them first; deletes all data).
# - python -m flask stock seed-demo
#   Insert a handful of demo products (skips barcodes that already exist).
# - python -m flask stock low-stock [--notify]
#   List products at or below their minimum stock level.
# - python -m flask stock rebuild-index
#   Rebuild the product search index in batches.
# - python -m flask stock cache-stats
#   Print the read cache statistics for this process.
# - python -m flask stock export PATH [--format json|csv] [--no-products --no-sales --no-counts]
#   Write a backup (JSON: products, sales, counts; CSV: products only).
# - python -m flask stock import PATH [--format json|csv] [--replace]
#   Restore a backup; existing ids are skipped unless --replace (products only).

import click
from flask.cli import with_appcontext

from .extensions import cache, db
from .money import format_currency
from .services import backup_service, inventory_service, products_service, search_service
from .validation import ConflictError, ValidationError

DEMO_PRODUCTS = [
    {"name": "Coca-Cola 1.5L", "barcode": "4801981116072", "price": "75.00", "category": "Beverages", "stock_quantity": 24},
    {"name": "Lucky Me Pancit Canton", "barcode": "4807770270017", "price": "16.50", "category": "Food", "stock_quantity": 60},
    {"name": "Safeguard Soap 135g", "barcode": "4800888141125", "price": "52.00", "category": "Personal Care", "stock_quantity": 4},
    {"name": "Bear Brand 320g", "barcode": "4800361380126", "price": "139.75", "category": "Dairy", "stock_quantity": 12},
    {"name": "Skyflakes Crackers", "barcode": "4800016644306", "price": "8.25", "category": "Snacks", "stock_quantity": 0},
]


@click.group('stock')
def stock_group():
    """Inventory bootstrap, inspection and maintenance commands."""


@stock_group.command('init-db')
@click.option('--reset', is_flag=True, help='Drop all tables first')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def init_db(reset, yes):
    """Create the schema (db.create_all)."""
    if reset:
        if not yes:
            click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)
        click.echo("DELETE  Dropping all tables...")
        db.drop_all()
    db.create_all()
    cache.clear()
    click.echo("PASS Schema ready")


@stock_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Insert demo products."""
    created = 0
    for data in DEMO_PRODUCTS:
        try:
            product = products_service.create_product(dict(data))
        except ConflictError:
            click.echo(f"SKIP {data['barcode']} already exists")
            continue
        created += 1
        click.echo(f"PASS {product['barcode']} {product['name']} {format_currency(product['price'])}")
    click.echo(f"\nCreated {created} product(s)")


@stock_group.command('low-stock')
@click.option('--notify', is_flag=True, help='Publish a low-stock event for each product found')
@with_appcontext
def low_stock(notify):
    """List products at or below their minimum stock level."""
    if notify:
        found = inventory_service.check_low_stock()
        rows = [
            {"barcode": e.barcode, "name": e.product_name,
             "stock_quantity": e.stock_quantity, "min_stock_level": e.min_stock_level}
            for e in found
        ]
    else:
        rows = inventory_service.list_low_stock()

    if not rows:
        click.echo("PASS No products below minimum stock")
        return
    for row in rows:
        marker = "OUT " if row["stock_quantity"] <= 0 else "LOW "
        click.echo(
            f"{marker}{row['barcode']:<14} {row['name']:<40} "
            f"{row['stock_quantity']:>5} / min {row['min_stock_level']}"
        )


@stock_group.command('rebuild-index')
@click.option('--batch-size', default=search_service.REBUILD_BATCH_SIZE, show_default=True, type=int)
@with_appcontext
def rebuild_index(batch_size):
    """Rebuild the product search index."""
    indexed = search_service.rebuild_index(batch_size=batch_size)
    click.echo(f"PASS Indexed {indexed} product(s)")


@stock_group.command('cache-stats')
@with_appcontext
def cache_stats():
    """Print read cache statistics."""
    for key, value in cache.stats().items():
        click.echo(f"{key:<12} {value}")


@stock_group.command('export')
@click.argument('path', type=click.Path(dir_okay=False, writable=True))
@click.option('--format', 'fmt', type=click.Choice(['json', 'csv']), default='json', show_default=True)
@click.option('--products/--no-products', default=True, help='Include products (JSON only)')
@click.option('--sales/--no-sales', default=True, help='Include sales (JSON only)')
@click.option('--counts/--no-counts', default=True, help='Include inventory counts (JSON only)')
@with_appcontext
def export_backup(path, fmt, products, sales, counts):
    """Write a backup file."""
    if fmt == 'csv':
        with open(path, 'w', newline='', encoding='utf-8') as fh:
            written = backup_service.export_products_csv(fh)
        click.echo(f"PASS Exported {written} product(s) to {path}")
        return

    data = backup_service.export_data(
        include_products=products, include_sales=sales, include_counts=counts,
    )
    with open(path, 'w', encoding='utf-8') as fh:
        fh.write(backup_service.dumps(data))
    for section in backup_service.SECTIONS:
        if section in data:
            click.echo(f"PASS {section:<17} {len(data[section])}")
    click.echo(f"\nBackup written to {path}")


@stock_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--format', 'fmt', type=click.Choice(['json', 'csv']), default='json', show_default=True)
@click.option('--replace', is_flag=True, help='Overwrite products that already exist')
@with_appcontext
def import_backup(path, fmt, replace):
    """Restore a backup file."""
    try:
        with open(path, newline='', encoding='utf-8') as fh:
            if fmt == 'csv':
                result = {"products": backup_service.import_products_csv(fh, replace_existing=replace)}
                errors = result["products"].pop("errors")
            else:
                result = backup_service.import_data(backup_service.loads(fh.read()), replace_existing=replace)
                errors = result.pop("errors")
    except ValidationError as exc:
        raise click.ClickException(exc.message)

    for section in backup_service.SECTIONS:
        if section in result:
            stats = result[section]
            click.echo(
                f"PASS {section:<17} created={stats['created']} updated={stats['updated']} "
                f"skipped={stats['skipped']} failed={stats['failed']}"
            )
    for err in errors:
        click.echo(f"WARN {err['section']}[{err['index']}] {err['id'] or '-'}: {err['error']}")
    click.echo(f"\nImport finished with {len(errors)} error(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
