import argparse
import asyncio
import os
import sys

from stockfront.infra.sql import make_async_engine
from stockfront.model.db import create_schema
from stockfront.model.inventory import InventoryStore


async def seed(database_url, title, price, units_file, product_id=None):
    engine, db = make_async_engine(database_url)
    try:
        async with engine.begin() as conn:
            await create_schema(conn)
        print('✅ schema ready')

        inventory = InventoryStore(db)
        if product_id is None:
            product = await inventory.create_product(title, price)
            product_id = product.id
            print(f'✅ product {product_id} created: {title} @ {price}')
        elif await inventory.get_product(product_id) is None:
            print(f'❌ product {product_id} does not exist', file=sys.stderr)
            return 1

        if units_file:
            with open(units_file, encoding="utf-8") as f:
                added = await inventory.add_units(product_id, f.read().splitlines())
            free = await inventory.count_free(product_id)
            print(f'✅ {added} units added, {free} available')
        return 0
    finally:
        await engine.dispose()


def main():
    ap = argparse.ArgumentParser(
        description="Create a product and load its units, one per line."
    )
    ap.add_argument(
        "--database-url",
        default=os.getenv("DATABASE_URL", "sqlite:///./stockfront.db"),
    )
    ap.add_argument("--title", help="title of the new product")
    ap.add_argument("--price", type=int, help="price per unit, in rupiah")
    ap.add_argument(
        "--product-id", type=int,
        help="add units to an existing product instead of creating one",
    )
    ap.add_argument("--units", help="text file with one unit per line")
    args = ap.parse_args()

    if args.product_id is None and (not args.title or not args.price):
        ap.error("--title and --price are required unless --product-id is given")
    if args.price is not None and args.price <= 0:
        ap.error("--price must be positive")

    sys.exit(asyncio.run(seed(
        args.database_url, args.title, args.price, args.units, args.product_id,
    )))


if __name__ == '__main__':
    main()
