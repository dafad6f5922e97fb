"""
Orchestration Service

Multi-channel campaign orchestration engine providing:
- Execution plans (sequential, parallel, staged, optimal) with duration estimates
- Deferred per-channel triggers with cancellation
- Live per-channel delivery and engagement aggregation
- A/B experiments with two-proportion significance testing

Port: 8260
"""

__version__ = "1.0.0"
__service__ = "orchestration_service"
