"""Application modules.

This package contains the feature modules of the Voicecast backend:
- user: user identity attributes and block relationships
- wallet: point balances debited per broadcast
- settings: runtime-editable broadcast limit configuration
- conversation: 1:1 conversations and their messages
- notification: push delivery of broadcast and reply alerts
- broadcast: rate limiting, recipient selection and fan-out
"""
