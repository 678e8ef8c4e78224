"""In-memory state of one running server."""

from dataclasses import dataclass, field
from typing import Set, Tuple

from protocol.constants import UNASSIGNED_CLIENT_ID


@dataclass
class ServerSession:
    """Counters and client registry of a server process. Not persisted."""

    instance_number: int = 1
    next_client_id: int = 1
    known_clients: Set[int] = field(default_factory=set)
    processed: int = 0
    errors: int = 0

    def register_client(self, client_id: int) -> Tuple[int, bool]:
        """
        Resolve the id of the client behind a request.

        A client without an id gets the next sequential one. A client
        presenting an id this server has never seen (for example one that
        reconnected after a restart) is registered as is.

        Returns:
            Tuple of (client id, whether the client is new to this server)
        """
        if client_id == UNASSIGNED_CLIENT_ID:
            client_id = self.next_client_id
            self.next_client_id += 1
            self.known_clients.add(client_id)
            return client_id, True

        if client_id not in self.known_clients:
            self.known_clients.add(client_id)
            if client_id >= self.next_client_id:
                self.next_client_id = client_id + 1
            return client_id, True

        return client_id, False

    @property
    def client_count(self) -> int:
        return len(self.known_clients)
