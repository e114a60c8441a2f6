"""Clients for the collaborators around the chat core.

- profile: user-profile service (privacy flags, public profiles, last seen)
- cache: TTL key-value cache for the chat list
- link_preview: URL -> preview card
- images: blob store for image attachments
"""
