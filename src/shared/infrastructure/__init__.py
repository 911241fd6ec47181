"""
Shared Infrastructure
======================

Cross-cutting technical concerns:
- Structured JSON logging
- Correlation ID propagation
- Latency timing
"""
