"""
============================================================================
Evaluation Desk - Services Layer
============================================================================

Domain orchestration: plan catalog, evaluation state machine, broker
provisioning, payment webhook handling and registration.

Reliability Level: L6 Critical
============================================================================
"""
