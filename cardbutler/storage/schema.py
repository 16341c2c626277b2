"""
共享数据库表结构定义
"""

CARDS_TABLE_SQL = '''
    CREATE TABLE IF NOT EXISTS cards (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sync_id TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL DEFAULT '',
        bank TEXT NOT NULL DEFAULT '',
        card_number TEXT DEFAULT '',
        cvv TEXT DEFAULT '',
        expiry_date TEXT DEFAULT '',
        cardholder_name TEXT DEFAULT '',
        credit_limit INTEGER DEFAULT 0,
        billing_day INTEGER DEFAULT 0,
        payment_due_day INTEGER DEFAULT 0,
        color TEXT DEFAULT '',
        card_front_image TEXT DEFAULT '',
        card_back_image TEXT DEFAULT '',
        notes TEXT DEFAULT '',
        iv TEXT DEFAULT '',
        owner TEXT DEFAULT '',
        last_four TEXT DEFAULT '',
        is_deleted INTEGER DEFAULT 0,
        created_at INTEGER NOT NULL DEFAULT 0,
        updated_at INTEGER NOT NULL DEFAULT 0
    )
'''

STATEMENTS_TABLE_SQL = '''
    CREATE TABLE IF NOT EXISTS bill_statements (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        card_sync_id TEXT NOT NULL,
        mail_message_id TEXT NOT NULL UNIQUE,
        bank TEXT DEFAULT '',
        amount DECIMAL(15, 2),
        currency TEXT DEFAULT 'CNY',
        bill_date TEXT DEFAULT '',
        due_date TEXT DEFAULT '',
        min_payment DECIMAL(15, 2),
        statement_type TEXT DEFAULT '',
        raw_content TEXT DEFAULT '',
        matched_by TEXT DEFAULT '',
        match_confidence TEXT DEFAULT '',
        fetched_at INTEGER NOT NULL
    )
'''

EMAIL_CONFIG_TABLE_SQL = '''
    CREATE TABLE IF NOT EXISTS email_config (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        email TEXT NOT NULL,
        password TEXT NOT NULL,
        imap_host TEXT NOT NULL DEFAULT 'imap.qq.com:993'
    )
'''

INDEXES_SQL = (
    'CREATE INDEX IF NOT EXISTS idx_cards_updated_at ON cards(updated_at)',
    'CREATE INDEX IF NOT EXISTS idx_statements_fetched_at ON bill_statements(fetched_at)',
    'CREATE INDEX IF NOT EXISTS idx_statements_card ON bill_statements(card_sync_id)',
)

# 旧库缺失时补齐的列：(表, 列, 类型)
MIGRATION_COLUMNS = (
    ('cards', 'iv', "TEXT DEFAULT ''"),
    ('cards', 'owner', "TEXT DEFAULT ''"),
    ('cards', 'last_four', "TEXT DEFAULT ''"),
)
