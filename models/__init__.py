from .query import QueryContext, WorkItemFilter, WorkItemQuery  # noqa: F401

__all__ = [
    "QueryContext",
    "WorkItemFilter",
    "WorkItemQuery",
]
