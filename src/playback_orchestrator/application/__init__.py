"""
Application Layer

Services that drive the domain objects against the remote cluster.

Structure:
- services/: resilience primitives, circuit breaker, result cache, node
  health, playback sessions and the orchestrator facade
- interfaces/: Port interfaces for infrastructure adapters
"""
