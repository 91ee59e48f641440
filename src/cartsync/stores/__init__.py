from cartsync.stores.firestore import FirestoreStore
from cartsync.stores.memory import InMemoryStore

__all__ = ["FirestoreStore", "InMemoryStore"]
