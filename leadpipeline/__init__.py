"""
Lead pipeline agents for home-services leads.

This package contains the agents that move a lead service from intake to
fulfillment, and the infrastructure they share.

Key components:
- core: stage machine, quote calculator, normalization, repository and ports
- agents: tool-call tracking, fallback recovery, toolbox and orchestrators
- database: Supabase-backed repository
"""

__version__ = "0.1.0"
