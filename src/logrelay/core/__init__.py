"""
Core business logic components.

This package contains the relay pipeline components:
- Token acquisition and caching
- Log source client
- Event filtering
- Webhook delivery dispatcher
- Checkpoint store
- Pipeline orchestrator and relay service
- Metrics collection
"""
