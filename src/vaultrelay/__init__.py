"""vaultrelay - Ephemeral, content-blind message relay.

Usage:
    from vaultrelay import VaultStore, VaultFull

    store = VaultStore()
    store.create_or_join("vault-0001", "private", user_a)
    store.create_or_join("vault-0001", "private", user_b)

    ts = store.post_message("msg-00001", "vault-0001", ciphertext)
    messages, participant_count = store.get_messages("vault-0001", since=0)

    store.ack_messages("vault-0001", ["msg-00001"], user_a)
    store.ack_messages("vault-0001", ["msg-00001"], user_b)  # deleted now

    # Serve it over HTTP
    #   vaultrelay serve --port 3000
"""

from vaultrelay._version import __version__
from vaultrelay.client import RelayError, VaultFullError, VaultRelayClient
from vaultrelay.options import RelayConfigError, RelayOptions
from vaultrelay.store import VaultFull, VaultStore

__all__ = [
    "__version__",
    "VaultStore",
    "VaultFull",
    "RelayOptions",
    "RelayConfigError",
    "VaultRelayClient",
    "RelayError",
    "VaultFullError",
]
