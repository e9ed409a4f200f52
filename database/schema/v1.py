"""Initial ledger projection schema: assets, transfers and the sync cursor."""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'assets',
            'columns': [
                {'name': 'asset_id', 'type': 'TEXT', 'primary_key': True},  # 0x + 64 hex chars
                {'name': 'owner', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'registered_at', 'type': 'INT8', 'nullable': False},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_assets_owner', 'columns': ['owner']},
                {'name': 'idx_assets_registered_at', 'columns': ['registered_at']}
            ]
        },
        {
            # Append-only. No foreign key to assets: a transfer may be
            # projected before the registration of its asset.
            'name': 'transfers',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'asset_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'old_owner', 'type': 'TEXT', 'nullable': False},
                {'name': 'new_owner', 'type': 'TEXT', 'nullable': False},
                {'name': 'timestamp', 'type': 'INT8', 'nullable': False},  # Ingestion wall clock
                {'name': 'txn_hash', 'type': 'TEXT', 'nullable': False},
                {'name': 'block_number', 'type': 'INT8', 'nullable': True}
            ],
            'indexes': [
                {'name': 'uq_transfers_asset_txn', 'columns': ['asset_id', 'txn_hash'], 'unique': True},
                {'name': 'idx_transfers_new_owner', 'columns': ['new_owner']}
            ]
        },
        {
            'name': 'sync_cursor',
            'columns': [
                {'name': 'id', 'type': 'INT8', 'primary_key': True},
                {'name': 'last_block', 'type': 'INT8', 'nullable': False},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'default': 'now()'}
            ]
        }
    ],
    'migrations': []
}
