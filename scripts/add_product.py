#!/usr/bin/env python3
"""
Добавить товар в каталог.
Запуск из корня проекта: python -m scripts.add_product "Minecraft Java Edition" 1999 --description "..."
"""
import argparse
import os
import sys

# корень проекта в PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from keyshop.db.init_db import init_db
from keyshop.db.session import session_scope
from keyshop.services.products.service import ProductService


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Add a product to the catalog")
    parser.add_argument("name")
    parser.add_argument("price", type=int, help="цена в рублях")
    parser.add_argument("--description", default=None)
    parser.add_argument("--disabled", action="store_true", help="создать скрытым")
    args = parser.parse_args(argv)

    init_db()
    try:
        with session_scope() as db:
            product = ProductService(db).create(
                args.name, args.price, args.description, enabled=not args.disabled
            )
            product_id = product.id
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    print(f'✅ Товар "{args.name}" добавлен в магазин (id={product_id})')
    return 0


if __name__ == "__main__":
    sys.exit(main())
