"""
MentorFlow - Metered Generation Tracking
========================================

Admission control and asynchronous job tracking for the AI mentoring product.

Scope:
- Subscription-tier usage quotas (sessions, minutes, documents, tokens)
- Document generation requests tracked to a terminal result
- Status reconciliation across polling and push notifications
- One-time materialization of generated documents

OUT OF SCOPE:
- The generation work itself (performed by the generation service)
- Rendering/export of documents, checkout, authentication
"""

__version__ = "1.0.0"
__product__ = "MentorFlow"
