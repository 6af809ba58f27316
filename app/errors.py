"""Error kinds raised by the branch routing and reporting core."""

from typing import Optional


class InvalidBranchSelection(Exception):
    """The user has no branch at the requested (or stored) index."""

    def __init__(self, branch_index: Optional[int], branch_count: int = 0) -> None:
        self.branch_index = branch_index
        self.branch_count = branch_count
        super().__init__(
            f"Invalid branch selection {branch_index!r} ({branch_count} branches available)"
        )


class QueryFailed(Exception):
    """A branch database was unreachable or rejected a report query."""

    def __init__(self, query_name: str, cause: Optional[BaseException] = None) -> None:
        self.query_name = query_name
        self.cause = cause
        message = f"Query '{query_name}' failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class RegisterExtensionLookupFailed(Exception):
    """The per-branch register table could not be read.

    Never propagated past the router: resolution degrades to the primary
    register.
    """

    def __init__(self, branch_id: Optional[int], cause: Optional[BaseException] = None) -> None:
        self.branch_id = branch_id
        self.cause = cause
        super().__init__(f"Register lookup failed for branch {branch_id}: {cause}")
