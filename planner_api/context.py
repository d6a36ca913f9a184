"""Request context management for observability.

Context variables for request tracking across async boundaries.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Report being viewed, paid for or generated
report_id_var: ContextVar[str] = ContextVar("report_id", default="")

# Payment record touched by the current request
payment_id_var: ContextVar[str] = ContextVar("payment_id", default="")
