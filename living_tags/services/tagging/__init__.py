"""Tag assignment engine: store, reconciliation, classification and mutations."""
