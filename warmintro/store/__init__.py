from warmintro.store.base import Store


def get_store(kind: str, db_path: str | None = None) -> Store:
    """Factory function to create a store instance."""
    if kind == "memory":
        from warmintro.store.memory import MemoryStore
        return MemoryStore()
    elif kind == "sqlite":
        if not db_path:
            raise ValueError("sqlite store requires a db_path")
        from warmintro.store.sqlite import SqliteStore
        return SqliteStore(db_path)
    else:
        raise ValueError(f"Unknown store: {kind}. Available: ['memory', 'sqlite']")


__all__ = ["Store", "get_store"]
