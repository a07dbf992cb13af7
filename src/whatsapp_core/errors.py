"""Error taxonomy shared by the store, the resolver and the tool layer."""


class BridgeError(Exception):
    """Base class. ``str(err)`` is the human-readable text shown to the caller."""


class InvalidAddress(BridgeError):
    pass


class InvalidArgument(BridgeError):
    pass


class NotFound(BridgeError):
    pass


class _Ambiguous(BridgeError):
    noun = "entries"

    def __init__(self, query: str, candidates: list[tuple[str, str]]) -> None:
        self.query = query
        self.candidates = list(candidates)
        lines = "\n".join(f"• {name} → {jid}" for name, jid in self.candidates)
        super().__init__(
            f'Multiple {self.noun} match "{query}". '
            f"Please be more specific or use a JID directly:\n{lines}"
        )


class AmbiguousContact(_Ambiguous):
    noun = "contacts"


class AmbiguousGroup(_Ambiguous):
    noun = "groups"


class TransportUnavailable(BridgeError):
    def __init__(self, message: str = "Error: WhatsApp connection is not active.") -> None:
        super().__init__(message)


class MessageNotFound(BridgeError):
    pass


class DispatchFailure(BridgeError):
    pass


class StoreError(BridgeError):
    """Wraps database-layer failures (I/O, corruption, constraint errors)."""
