"""mongod wire protocol helpers."""
