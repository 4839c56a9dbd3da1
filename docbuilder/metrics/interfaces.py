from typing import Protocol


class PoolStats(Protocol):
    def idle_connections(self) -> int: ...

    def used_connections(self) -> int: ...

    def max_size(self) -> int: ...


class QueueStats(Protocol):
    async def pending_count(self) -> int: ...

    async def prioritized_count(self) -> int: ...

    async def failed_count(self) -> int: ...


class ProcessStatsSource(Protocol):
    def open_file_descriptor_count(self) -> int: ...

    def thread_count(self) -> int: ...
