from typing import Optional

import psutil


class ProcessStats:
    """
    Read-only view of the current process as reported by the OS.
    Errors from psutil are not caught here; gather decides what a failed read means.
    """

    def __init__(self, pid: Optional[int] = None) -> None:
        self._process = psutil.Process(pid)

    def open_file_descriptor_count(self) -> int:
        return int(self._process.num_fds())

    def thread_count(self) -> int:
        return int(self._process.num_threads())
