"""
Conversational command-interpretation core.

Turns free-text messages into validated, confirmable actions:

  similarity      string similarity scoring
  resolver        fuzzy entity search and resolved/ambiguous/not_found verdicts
  pending         per-user pending conversation state
  preprocessor    deterministic first pass (cancel, skip, corrections, chips)
  classifier      external intent classification with deterministic fallback
  tools           tool registry, read results and action previews
  playbooks       guided multi-step workflow definitions and runner
  chat            per-message orchestration
  confirm         the only place domain writes happen
  telemetry       fire-and-forget event logging
"""
