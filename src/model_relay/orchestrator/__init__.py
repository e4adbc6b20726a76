"""Role-based generation routing across LLM providers.

A request names a starting role (main, research or fallback). The
orchestrator resolves the provider/model bound to each role at call time,
skips roles whose provider has no credential, retries transient provider
failures within a bounded budget and falls through the remaining roles in
the order main -> fallback -> research. Exactly one telemetry record is
produced for the role that succeeds.
"""
