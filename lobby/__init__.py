"""
Lobby - Tournament lifecycle and registration admission

Responsibilities:
- Tournament records and their status state machine
- Registration admission (capacity, uniqueness, format, authorization)
- Lifecycle and registration event announcements
"""
