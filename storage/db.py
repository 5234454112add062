"""
Pipeline Database

Creates and manages the pipeline tables:
- customers: one row per customer code
- sale_lines: one row per (doc_code, line_no)
- cash_records: cash/voucher aggregates per document
- stock_transfers: raw stock movements (duplicates tolerated, composite_key indexed)
- dispatch_records: invoice dispatch state, unique per doc_code
- warehouse_postings: warehouse posting state, unique per doc_code
"""

import sqlite3
from pathlib import Path
from typing import Union

from core.config import DEFAULT_DB_PATH


def get_db_connection(db_path: Union[str, Path] = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Get database connection with row factory"""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_pipeline_db(db_path: Union[str, Path] = DEFAULT_DB_PATH) -> None:
    """
    Initialize the pipeline database tables.

    Safe to call repeatedly (CREATE TABLE IF NOT EXISTS).

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_db_connection(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code TEXT NOT NULL UNIQUE,
                name TEXT,
                mobile TEXT,
                brand TEXT,
                grade_name TEXT,
                branch_code TEXT,
                ecom_name TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sale_lines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                doc_code TEXT NOT NULL,
                line_no INTEGER NOT NULL,
                doc_date TEXT NOT NULL,
                branch_code TEXT,
                brand TEXT,
                customer_code TEXT,
                order_type_name TEXT,
                item_code TEXT,
                item_name TEXT,
                product_type TEXT,
                qty REAL DEFAULT 0,
                revenue REAL DEFAULT 0,
                line_total REAL DEFAULT 0,
                goods_amount REAL,
                gross_amount REAL,
                unit_price REAL,
                promotion_code TEXT,
                package_code TEXT,
                sales_channel TEXT,
                type_sale TEXT,
                serial TEXT,
                unit TEXT,
                tax_code TEXT,
                discounts TEXT,
                labels TEXT,
                resolved INTEGER DEFAULT 1,
                processed INTEGER DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,

                UNIQUE(doc_code, line_no)
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_sale_lines_processed
            ON sale_lines(processed, doc_code)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cash_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                doc_code TEXT NOT NULL,
                fop_syscode TEXT NOT NULL,
                refno TEXT NOT NULL DEFAULT '',
                total_in REAL DEFAULT 0,

                UNIQUE(doc_code, fop_syscode, refno)
            )
        """)

        # No unique constraint: physical duplicates are kept for audit,
        # processing reads the effective view grouped by composite_key.
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stock_transfers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                doctype TEXT,
                doc_code TEXT NOT NULL,
                trans_date TEXT,
                doc_desc TEXT,
                branch_code TEXT,
                brand_code TEXT,
                item_code TEXT,
                item_name TEXT,
                material_code TEXT,
                stock_code TEXT,
                related_stock_code TEXT,
                io_type TEXT,
                qty REAL DEFAULT 0,
                batch_serial TEXT,
                so_code TEXT,
                sync_date TEXT,
                brand TEXT,
                composite_key TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_stock_transfers_doc
            ON stock_transfers(doc_code)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_stock_transfers_key
            ON stock_transfers(composite_key)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dispatch_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                doc_code TEXT NOT NULL UNIQUE,
                status TEXT NOT NULL DEFAULT 'UNSENT',
                message TEXT,
                guid TEXT,
                response_payload TEXT,
                customer_code TEXT,
                unit_code TEXT,
                doc_date TEXT,
                attempts INTEGER DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS warehouse_postings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                doc_code TEXT NOT NULL UNIQUE,
                io_type TEXT,
                success INTEGER DEFAULT 0,
                result_payload TEXT,
                error_message TEXT,
                processed_date TEXT,
                attempts INTEGER DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.commit()
    finally:
        conn.close()
