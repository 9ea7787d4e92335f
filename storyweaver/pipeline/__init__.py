"""Turn synchronization pipeline.

Runs one player turn against the provider and reconciles the structured
reply into a new session value:
  streaming     : live field previews from the partially received reply
  orchestrator  : request, validation, reconciliation, memory overview,
                  persistence, all under one timeout and cancellation event

See orchestrator.py for the full turn flow.
"""

from .orchestrator import (  # noqa: F401
    CONSOLIDATION_ATTEMPTS,
    CONSOLIDATION_RETRY_DELAY,
    TURN_TIMEOUT_SECONDS,
    ConsolidationError,
    SessionStore,
    TurnCancelledError,
    TurnOutcome,
    TurnTimeoutError,
    TurnValidationError,
    parse_reply,
    run_turn,
)
from .streaming import (  # noqa: F401
    PreviewTracker,
    extract_object_array_field,
    extract_previews,
    extract_string_array_field,
    extract_string_field,
)
