#!/usr/bin/env python3
"""
Загрузить ключи товара: из аргументов или из файла (один ключ на строку).
Запуск из корня проекта: python -m scripts.add_keys 1 KEY1-AAAA KEY2-BBBB
или: python -m scripts.add_keys 1 --file keys.txt
"""
import argparse
import os
import sys

# корень проекта в PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from keyshop.core.errors import NotFound
from keyshop.db.init_db import init_db
from keyshop.db.session import session_scope
from keyshop.services.keys.service import KeyStoreService


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Add license keys for a product")
    parser.add_argument("product_id", type=int)
    parser.add_argument("keys", nargs="*")
    parser.add_argument("--file", help="файл с ключами, по одному на строку")
    args = parser.parse_args(argv)

    values = list(args.keys)
    if args.file:
        with open(args.file, encoding="utf-8") as f:
            values.extend(f.read().splitlines())
    if not values:
        parser.error("no keys given")

    init_db()
    try:
        with session_scope() as db:
            added, duplicates = KeyStoreService(db).add_keys(args.product_id, values)
    except NotFound:
        print(f"❌ Товар {args.product_id} не найден")
        return 1
    print(f"✅ Ключи добавлены: {added}")
    if duplicates:
        print(f"Пропущены дубликаты ({len(duplicates)}): {', '.join(duplicates)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
