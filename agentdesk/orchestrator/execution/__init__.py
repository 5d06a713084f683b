"""Execution machinery for one conversation session.

This package contains the per-session components:

- **loop**: Processing loop (queue -> batch -> one exchange -> per-slot dispatch)
- **reconciler**: Streaming-text reconciliation (deltas vs. final assistant text)
- **permissions**: Permission gate (pre-tool-use hook -> human approval)
- **interrupt**: Interrupt controller (cooperative cancellation of an exchange)
- **input**: Input mapping (queued message + attachments -> outbound turn)
"""
