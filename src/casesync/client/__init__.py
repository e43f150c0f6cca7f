"""Client side of casesync: replica store, remote adapter, sync engine and CLI."""
